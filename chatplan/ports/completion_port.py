"""Text-completion port — abstract interface to a language model."""

from __future__ import annotations

from typing import Protocol, Sequence


class CompletionPort(Protocol):
    """Prompt in, text out.

    With ``labels`` the reply is constrained to one of the given labels
    (normalized to lower case); otherwise it is plain text. Implementations
    raise ExternalServiceError on provider failures or timeouts.
    """

    async def complete(
        self,
        prompt: str,
        system: str = "",
        labels: Sequence[str] | None = None,
        max_tokens: int = 1024,
    ) -> str: ...
