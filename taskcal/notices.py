from __future__ import annotations

import logging
from typing import Protocol

from taskcal.state_store import StateStore

logger = logging.getLogger(__name__)


class NoticeSink(Protocol):
    """Where user-facing progress and failure messages go."""

    def notify(self, message: str, *, level: str = "info") -> None: ...


class LoggingNoticeSink:
    def notify(self, message: str, *, level: str = "info") -> None:
        logger.log(logging.WARNING if level == "error" else logging.INFO, "%s", message)


class StoredNoticeSink(LoggingNoticeSink):
    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def notify(self, message: str, *, level: str = "info") -> None:
        super().notify(message, level=level)
        self.state_store.record_notice(message, level=level)
