from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ConversationKey:
    """Unordered pair of participants identifying a two-party thread."""

    members: frozenset[str]

    @classmethod
    def of(cls, user_a: str, user_b: str) -> ConversationKey:
        return cls(frozenset((user_a, user_b)))
