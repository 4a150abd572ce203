"""Data model for task records, queued mutations and sync results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize a datetime with fixed microsecond precision.

    Fixed precision keeps stored timestamps lexically sortable.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC.

    Raises:
        ValueError: If the value is neither a datetime nor an ISO-8601 string.
    """
    if isinstance(value, datetime):
        parsed = value
    elif not isinstance(value, str):
        raise ValueError(f"Expected an ISO-8601 timestamp, got {type(value).__name__}")
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SyncState(Enum):
    """Per-task sync state."""

    PENDING = "pending"  # Locally mutated, not yet confirmed
    SYNCED = "synced"
    ERROR = "error"  # Last attempt failed, will retry
    FAILED = "failed"  # Retry ceiling reached, needs intervention


class OperationKind(Enum):
    """Kind of queued mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutcomeStatus(Enum):
    """Per-item status reported by the authority."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


@dataclass
class Task:
    """A user-visible task record."""

    id: str
    title: str
    description: str | None
    completed: bool
    created_at: datetime
    updated_at: datetime
    is_deleted: bool = False
    sync_status: SyncState = SyncState.PENDING
    server_id: str | None = None
    last_synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "is_deleted": self.is_deleted,
            "sync_status": self.sync_status.value,
            "server_id": self.server_id,
            "last_synced_at": (
                to_iso(self.last_synced_at) if self.last_synced_at else None
            ),
        }

    def snapshot(self) -> dict[str, Any]:
        """Payload captured into the queue at enqueue time."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "is_deleted": self.is_deleted,
        }


@dataclass
class QueueItem:
    """A pending mutation awaiting transmission."""

    id: str
    task_id: str
    operation: OperationKind
    payload: dict[str, Any]
    created_at: datetime
    retry_count: int = 0
    error_message: str | None = None

    def to_wire(self) -> dict[str, Any]:
        """Item as sent to the authority."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "operation": self.operation.value,
            "data": self.payload,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class BatchOutcome:
    """Authority's verdict for one item of a batch."""

    task_id: str
    status: OutcomeStatus
    server_id: str | None = None
    resolved_data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchOutcome":
        """Parse one entry of a batch response.

        Raises:
            KeyError, ValueError: If the entry is malformed.
        """
        return cls(
            task_id=data["client_id"],
            status=OutcomeStatus(data["status"]),
            server_id=data.get("server_id"),
            resolved_data=data.get("resolved_data"),
            error=data.get("error"),
        )


@dataclass
class ReconciledRecord:
    """State of a task after last-write-wins resolution."""

    task_id: str
    winner: str  # "local" or "authority"
    title: str
    description: str | None
    completed: bool
    is_deleted: bool
    updated_at: datetime
    server_id: str | None = None


@dataclass
class ItemError:
    """One failed item in a sync pass."""

    task_id: str
    operation: str
    message: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "operation": self.operation,
            "error": self.message,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass
class SyncSummary:
    """Result of one synchronization pass."""

    synced_count: int = 0
    failed_count: int = 0
    errors: list[ItemError] = field(default_factory=list)
    offline: bool = False
    skipped_count: int = 0  # Dead letters left untouched

    @property
    def success(self) -> bool:
        return self.failed_count == 0 and not self.offline

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "synced_items": self.synced_count,
            "failed_items": self.failed_count,
            "skipped_items": self.skipped_count,
            "offline": self.offline,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class SyncStatusReport:
    """Snapshot of sync health for status queries."""

    pending_count: int
    last_sync_timestamp: datetime | None
    is_reachable: bool
    queue_size: int
    failed_count: int = 0
    dead_letter_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending_sync_count": self.pending_count,
            "last_sync_timestamp": (
                to_iso(self.last_sync_timestamp) if self.last_sync_timestamp else None
            ),
            "is_online": self.is_reachable,
            "sync_queue_size": self.queue_size,
            "failed_count": self.failed_count,
            "dead_letter_count": self.dead_letter_count,
        }
