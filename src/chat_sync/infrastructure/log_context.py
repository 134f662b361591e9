from __future__ import annotations

import logging
from contextvars import ContextVar

from chat_sync.config import settings

connection_id_ctx: ContextVar[str] = ContextVar("connection_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(connection_id)s]: %(message)s"


class ConnectionIdFilter(logging.Filter):
    """Stamps each record with the connection it was logged under."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.connection_id = connection_id_ctx.get()
        return True


def configure_logging(level: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.addFilter(ConnectionIdFilter())
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format=LOG_FORMAT,
        handlers=[handler],
    )
