from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass
from typing import NewType, TypeAlias

CanonicalId = NewType("CanonicalId", str)
TempId = NewType("TempId", str)


@dataclass(frozen=True, slots=True)
class Pending:
    """Identity of an optimistic message the server has not confirmed yet."""

    temp_id: TempId

    @property
    def value(self) -> str:
        return self.temp_id


@dataclass(frozen=True, slots=True)
class Confirmed:
    """Server-assigned identity."""

    canonical_id: CanonicalId

    @property
    def value(self) -> str:
        return self.canonical_id


MessageIdentity: TypeAlias = Pending | Confirmed


class TempIdFactory:
    """Temporary ids unique within one session."""

    def __init__(self, prefix: str | None = None) -> None:
        self._prefix = prefix or f"tmp-{uuid.uuid4().hex[:8]}"
        self._counter = itertools.count(1)

    def __call__(self) -> TempId:
        return TempId(f"{self._prefix}-{next(self._counter)}")
