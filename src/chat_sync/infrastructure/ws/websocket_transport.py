"""Transport implementation over the ``websockets`` asyncio client."""
from __future__ import annotations

import logging
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
)

from chat_sync.application.exceptions import AppError, AuthError, MalformedEvent, TransportError
from chat_sync.config import settings

logger = logging.getLogger(__name__)

AUTH_REJECTED_STATUSES = frozenset({401, 403})
AUTH_CLOSE_CODE = 4001


class WebSocketTransport:
    """Implements application.ports.transport.Transport."""

    def __init__(
        self,
        url: str | None = None,
        *,
        ping_interval: float | None = None,
        open_timeout: float | None = None,
    ) -> None:
        self._url = url or settings.ws_url
        self._ping_interval = ping_interval if ping_interval is not None else settings.WS_PING_INTERVAL
        self._open_timeout = open_timeout if open_timeout is not None else settings.WS_OPEN_TIMEOUT
        self._ws: ClientConnection | None = None

    def _uri(self, token: str) -> str:
        sep = "&" if "?" in self._url else "?"
        return f"{self._url}{sep}{urlencode({'token': token})}"

    async def open(self, token: str) -> None:
        try:
            self._ws = await connect(
                self._uri(token),
                ping_interval=self._ping_interval,
                open_timeout=self._open_timeout,
            )
        except InvalidStatus as exc:
            status = exc.response.status_code
            if status in AUTH_REJECTED_STATUSES:
                raise AuthError(f"server rejected credentials (HTTP {status})") from exc
            raise TransportError(f"handshake failed (HTTP {status})") from exc
        except (InvalidURI, InvalidHandshake, OSError, TimeoutError) as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc
        logger.debug("WS opened: %s", self._url)

    async def send(self, raw: str) -> None:
        ws = self._require()
        try:
            await ws.send(raw)
        except ConnectionClosed as exc:
            raise _closed_error(exc) from exc

    async def receive(self) -> str:
        ws = self._require()
        try:
            frame = await ws.recv()
        except ConnectionClosed as exc:
            raise _closed_error(exc) from exc
        if isinstance(frame, bytes):
            try:
                return frame.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MalformedEvent(f"binary frame is not UTF-8: {exc.reason}") from exc
        return frame

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.debug("WS closed: %s", self._url)

    def _require(self) -> ClientConnection:
        if self._ws is None:
            raise TransportError("transport is not open")
        return self._ws


def _closed_error(exc: ConnectionClosed) -> AppError:
    if exc.rcvd is not None and exc.rcvd.code == AUTH_CLOSE_CODE:
        return AuthError(exc.rcvd.reason or "authentication failed")
    return TransportError(str(exc))
