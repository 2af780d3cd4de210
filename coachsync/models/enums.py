from __future__ import annotations

from enum import Enum

from coachsync.exceptions import UnsupportedProvider


class Provider(str, Enum):
    """Closed set of supported fitness providers."""

    STRAVA = "strava"
    MYFITNESSPAL = "myfitnesspal"

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        if isinstance(value, Provider):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedProvider(f"Integration type {value} is not supported") from None


class SyncStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED)


class RecordType(str, Enum):
    ACTIVITY = "activity"
    DIARY_ENTRY = "diary_entry"
