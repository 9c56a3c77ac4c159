"""
ChatPlan — Participant Resolver.

Maps free-text participant phrases to member ids of one conversation.

Resolution order per phrase:
1. "everyone" / "all" → every member.
2. Role or role alias ("designers", "PMs") → every member holding that role.
3. Display name: exact, then prefix, then token subset. The first tier with
   exactly one hit wins; a tie is an error, never a guess.

The organizer is always included and the result has set semantics.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from chatplan.core.errors import ParticipantResolutionError
from chatplan.core.roles import role_for_alias
from chatplan.data.models import Member

logger = logging.getLogger(__name__)

EVERYONE = "everyone"
PARTNER = "this user"

_EVERYONE_PHRASES = frozenset({
    "everyone", "everybody", "all", "all members",
    "whole team", "the whole team", "entire team", "the entire team",
})
_PARTNER_PHRASES = frozenset({"this user", "this person", "him", "her", "them"})


def _normalize(text: str) -> str:
    return " ".join(text.casefold().split())


def build_roster(members: Iterable[Member], participant_ids: Iterable[str] = ()) -> list[Member]:
    """Return a deduplicated roster, synthesizing one from flat ids when empty.

    Legacy conversations have no member records, only a participant id
    list; each id then becomes a member named after itself with the
    default role.
    """
    roster: dict[str, Member] = {}
    for member in members:
        roster.setdefault(member.id, member)
    if roster:
        return list(roster.values())

    for member_id in participant_ids:
        roster.setdefault(member_id, Member(id=member_id, display_name=member_id))
    if roster:
        logger.info("No member roster; synthesized %d members from participant ids", len(roster))
    return list(roster.values())


class ParticipantResolver:
    """Resolve participant phrases against a conversation roster."""

    def resolve(
        self,
        phrases: Sequence[str],
        members: Sequence[Member],
        organizer_id: str,
    ) -> set[str]:
        resolved: set[str] = {organizer_id}
        for phrase in phrases:
            matched = self.match_phrase(phrase, members, organizer_id)
            logger.debug("Phrase '%s' → %s", phrase, sorted(matched))
            resolved |= matched
        logger.info("Resolved %d phrase(s) to %d participant(s)", len(phrases), len(resolved))
        return resolved

    def match_phrase(self, phrase: str, members: Sequence[Member], organizer_id: str) -> set[str]:
        normalized = _normalize(phrase)
        if not normalized:
            raise ParticipantResolutionError(phrase, "empty participant reference")

        if normalized in _EVERYONE_PHRASES:
            if not members:
                raise ParticipantResolutionError(phrase, "the conversation has no members")
            return {m.id for m in members}

        if normalized in _PARTNER_PHRASES:
            return self._match_partner(phrase, members, organizer_id)

        role = role_for_alias(normalized)
        if role is not None:
            holders = {m.id for m in members if m.role == role}
            if not holders:
                raise ParticipantResolutionError(
                    phrase, f"no member currently has the {role.value} role"
                )
            return holders

        return {self._match_name(phrase, normalized, members).id}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _match_partner(phrase: str, members: Sequence[Member], organizer_id: str) -> set[str]:
        others = [m for m in members if m.id != organizer_id]
        if len(others) != 1:
            raise ParticipantResolutionError(
                phrase,
                "only works in a direct conversation with one other person",
                candidates=[m.display_name for m in others],
            )
        return {others[0].id}

    @staticmethod
    def _match_name(phrase: str, normalized: str, members: Sequence[Member]) -> Member:
        tokens = set(normalized.split())
        tiers = (
            ("exact", lambda name, m: name == normalized or m.id == phrase),
            ("prefix", lambda name, m: name.startswith(normalized)),
            ("token subset", lambda name, m: tokens <= set(name.split())),
        )
        for tier, predicate in tiers:
            hits = [m for m in members if predicate(_normalize(m.display_name), m)]
            if len(hits) == 1:
                logger.debug("Name '%s' matched %s by %s", phrase, hits[0].id, tier)
                return hits[0]
            if len(hits) > 1:
                raise ParticipantResolutionError(
                    phrase,
                    f"matches more than one member ({tier} match)",
                    candidates=sorted(m.display_name for m in hits),
                )
        raise ParticipantResolutionError(
            phrase,
            "no conversation member has that name or role",
            candidates=sorted(m.display_name for m in members),
        )
