"""Tests for chatplan.core.participant_resolver — phrases to member ids."""

import pytest

from chatplan.core.errors import ParticipantResolutionError
from chatplan.core.participant_resolver import (
    EVERYONE,
    PARTNER,
    ParticipantResolver,
    build_roster,
)
from chatplan.core.roles import ROLE_ALIASES, Role
from chatplan.data.models import Member

ROSTER = [
    Member("u1", "Olivia Park", Role.PM),
    Member("u2", "Dana Cohen", Role.DESIGN),
    Member("u3", "Forrest Gale", Role.DESIGN),
    Member("u4", "Atticus Finch", Role.SE),
    Member("u5", "Dana Scully", Role.QA),
]


@pytest.fixture
def resolver():
    return ParticipantResolver()


class TestCollectives:
    def test_everyone(self, resolver):
        assert resolver.resolve([EVERYONE], ROSTER, "u1") == {"u1", "u2", "u3", "u4", "u5"}

    @pytest.mark.parametrize("role", list(Role))
    def test_every_alias_yields_exactly_role_holders(self, resolver, role):
        roster = ROSTER + [Member("u9", "Sam Friend", Role.FRIEND), Member("u8", "Kim Stake", Role.STAKEHOLDER)]
        holders = {m.id for m in roster if m.role == role}
        for alias in ROLE_ALIASES[role]:
            assert resolver.match_phrase(f"all {alias}", roster, "u1") == holders

    def test_role_is_case_insensitive(self, resolver):
        assert resolver.match_phrase("Designers", ROSTER, "u1") == {"u2", "u3"}

    def test_role_without_holders(self, resolver):
        with pytest.raises(ParticipantResolutionError, match="Stakeholder"):
            resolver.match_phrase("stakeholders", ROSTER, "u1")


class TestNames:
    def test_exact(self, resolver):
        assert resolver.match_phrase("Atticus Finch", ROSTER, "u1") == {"u4"}

    def test_member_id(self, resolver):
        assert resolver.match_phrase("u4", ROSTER, "u1") == {"u4"}

    def test_prefix(self, resolver):
        assert resolver.match_phrase("Forr", ROSTER, "u1") == {"u3"}

    def test_token_subset(self, resolver):
        assert resolver.match_phrase("Finch", ROSTER, "u1") == {"u4"}

    def test_ambiguous_prefix_is_an_error(self, resolver):
        with pytest.raises(ParticipantResolutionError) as exc_info:
            resolver.match_phrase("Dana", ROSTER, "u1")
        assert exc_info.value.candidates == ["Dana Cohen", "Dana Scully"]

    def test_no_match_names_phrase(self, resolver):
        with pytest.raises(ParticipantResolutionError) as exc_info:
            resolver.match_phrase("Zed", ROSTER, "u1")
        assert exc_info.value.phrase == "Zed"
        assert "Olivia Park" in exc_info.value.to_dict()["candidates"]


class TestResolve:
    def test_organizer_always_included(self, resolver):
        assert resolver.resolve(["Atticus"], ROSTER, "u1") == {"u1", "u4"}

    def test_deduplicates(self, resolver):
        result = resolver.resolve([EVERYONE, "Atticus", "Atticus Finch"], ROSTER, "u1")
        assert result == {"u1", "u2", "u3", "u4", "u5"}

    def test_first_failure_raises(self, resolver):
        with pytest.raises(ParticipantResolutionError, match="Nobody"):
            resolver.resolve(["Atticus", "Nobody"], ROSTER, "u1")


class TestPartner:
    def test_direct_conversation(self, resolver):
        pair = [Member("u1", "Olivia"), Member("u2", "Dana")]
        assert resolver.match_phrase(PARTNER, pair, "u1") == {"u2"}

    def test_group_conversation_is_ambiguous(self, resolver):
        with pytest.raises(ParticipantResolutionError, match="direct conversation"):
            resolver.match_phrase("this user", ROSTER, "u1")


class TestBuildRoster:
    def test_dedupes_members(self):
        roster = build_roster([Member("u1", "A"), Member("u1", "A again"), Member("u2", "B")])
        assert [m.id for m in roster] == ["u1", "u2"]
        assert roster[0].display_name == "A"

    def test_falls_back_to_participant_ids(self):
        roster = build_roster([], ["u1", "u2", "u2"])
        assert [m.id for m in roster] == ["u1", "u2"]
        assert all(m.role is Role.FRIEND for m in roster)

    def test_legacy_roster_resolves_everyone(self):
        roster = build_roster([], ["u1", "u2", "u3"])
        assert ParticipantResolver().resolve([EVERYONE], roster, "u1") == {"u1", "u2", "u3"}
