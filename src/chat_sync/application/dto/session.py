from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Session:
    """Authenticated identity handed over by the auth collaborator."""

    user_id: str
    token: str = field(repr=False)
