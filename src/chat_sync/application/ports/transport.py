from __future__ import annotations

from typing import Callable, Protocol


class Transport(Protocol):
    """One duplex connection. Instances are single-use."""

    async def open(self, token: str) -> None:
        """Raises AuthError on rejected credentials, TransportError otherwise."""
        ...

    async def send(self, raw: str) -> None: ...

    async def receive(self) -> str:
        """Next inbound frame.

        Raises MalformedEvent for a frame that cannot be decoded (the
        connection stays up) and TransportError once the connection is gone.
        """
        ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], Transport]
