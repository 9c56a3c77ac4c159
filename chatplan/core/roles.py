"""
ChatPlan — Member roles and their natural-language aliases.

Roles are self-assigned labels used for collective participant matching
("all designers", "the PMs"). The alias table is immutable configuration.
"""

from __future__ import annotations

import re
from enum import Enum
from types import MappingProxyType


class Role(str, Enum):
    FRIEND = "Friend"
    PM = "PM"
    SE = "SE"
    QA = "QA"
    DESIGN = "Design"
    STAKEHOLDER = "Stakeholder"


DEFAULT_ROLE = Role.FRIEND

ROLE_ALIASES: MappingProxyType[Role, frozenset[str]] = MappingProxyType({
    Role.FRIEND: frozenset({"friend", "friends"}),
    Role.PM: frozenset({
        "pm", "pms", "project manager", "project managers",
        "product manager", "product managers", "manager", "managers",
    }),
    Role.SE: frozenset({
        "se", "ses", "engineer", "engineers", "developer", "developers",
        "software engineer", "software engineers",
        "software developer", "software developers", "dev", "devs",
    }),
    Role.QA: frozenset({"qa", "qas", "tester", "testers", "quality assurance"}),
    Role.DESIGN: frozenset({"designer", "designers", "design", "ux", "ui"}),
    Role.STAKEHOLDER: frozenset({"stakeholder", "stakeholders"}),
})

# alias → role, built once from the table above
_ALIAS_INDEX: dict[str, Role] = {
    alias: role for role, aliases in ROLE_ALIASES.items() for alias in aliases
}

_LEADING_DETERMINERS = re.compile(r"^(?:(?:all|the|our|my)\s+)+")


def _normalize(text: str) -> str:
    return " ".join(text.lower().split())


def role_for_alias(phrase: str) -> Role | None:
    """Return the role a phrase names ("designers", "all the PMs"), or None.

    Matching is case-insensitive and whole-phrase: "dev" names SE, "devon" does not.
    """
    normalized = _LEADING_DETERMINERS.sub("", _normalize(phrase))
    if not normalized:
        return None
    role = _ALIAS_INDEX.get(normalized)
    if role is not None:
        return role
    # Role names themselves ("Design", "Stakeholder") are accepted too
    for candidate in Role:
        if candidate.value.lower() == normalized:
            return candidate
    return None


def parse_role(value: str | None) -> Role:
    """Coerce a stored role value to a Role, defaulting to Friend when missing."""
    if not value:
        return DEFAULT_ROLE
    for candidate in Role:
        if candidate.value.lower() == value.strip().lower():
            return candidate
    raise ValueError(f"Unknown role {value!r}. Supported: {', '.join(r.value for r in Role)}")
