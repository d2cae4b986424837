from __future__ import annotations

NOT_FOUND_STATUSES = {404, 410}


class RemoteCalendarError(RuntimeError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status in NOT_FOUND_STATUSES


class TaskNotFoundError(LookupError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Task file not found: {path}")
        self.path = path


class TaskSyncError(RuntimeError):
    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
