"""Membership port — abstract interface to a conversation's roster.

The provider owns the self-identification rule for roles (a member may only
change their own role). Core modules trust the roster they are given.
"""

from __future__ import annotations

from typing import Protocol

from chatplan.data.models import Member


class MembershipPort(Protocol):
    """Read-only roster access used by core modules."""

    async def list_members(self, conversation_id: str) -> list[Member]:
        """Members with display names and roles; empty when no roster exists.

        In degraded mode the provider may return members without a stored
        role; those carry the default role.
        """
        ...

    async def participant_ids(self, conversation_id: str) -> list[str]:
        """The conversation's flat participant id list (legacy data)."""
        ...
