"""Last-write-wins conflict resolution."""

import logging
from typing import Any

from ..models import BatchOutcome, OutcomeStatus, ReconciledRecord, parse_timestamp

logger = logging.getLogger(__name__)


class ConflictResolver:
    """Pick the whole record state of whichever side was modified last.

    Fields are never merged. On an exact timestamp tie the authority wins so
    every client converges on its version.
    """

    def resolve(
        self, local_payload: dict[str, Any], outcome: BatchOutcome
    ) -> ReconciledRecord:
        """Reconcile a queued payload with the authority's decision.

        Args:
            local_payload: Task snapshot stored in the queue item.
            outcome: Authority verdict for the same task.

        Returns:
            The winning record state.

        Raises:
            ValueError: If the outcome is an error, a conflict without the
                authority's data and modification time, or the authority's
                values are malformed.
        """
        if outcome.status is OutcomeStatus.ERROR:
            raise ValueError(
                f"Cannot resolve task {outcome.task_id}: authority reported an error"
            )

        authority = outcome.resolved_data
        if authority is not None and not isinstance(authority, dict):
            raise ValueError(
                f"Resolved data for task {outcome.task_id} is not an object"
            )
        if outcome.status is OutcomeStatus.CONFLICT and (
            not authority or not authority.get("updated_at")
        ):
            raise ValueError(
                f"Conflict for task {outcome.task_id} carries no authority timestamp"
            )

        local_ts = parse_timestamp(local_payload["updated_at"])
        if authority and authority.get("updated_at"):
            authority_ts = parse_timestamp(authority["updated_at"])
        else:
            authority_ts = None

        if authority_ts is None or local_ts > authority_ts:
            winner, source, updated_at = "local", local_payload, local_ts
        else:
            winner, source, updated_at = "authority", authority, authority_ts
            _check_authority_fields(outcome.task_id, authority)

        logger.debug(
            f"Resolved task {outcome.task_id}: {winner} wins "
            f"(local={local_ts.isoformat()}, "
            f"authority={authority_ts.isoformat() if authority_ts else None})"
        )

        return ReconciledRecord(
            task_id=outcome.task_id,
            winner=winner,
            title=source.get("title", local_payload.get("title")),
            description=source.get("description"),
            completed=source.get("completed", False),
            is_deleted=source.get("is_deleted", False),
            updated_at=updated_at,
            server_id=outcome.server_id,
        )


def _check_authority_fields(task_id: str, data: dict[str, Any]) -> None:
    """Reject authority values the record store cannot hold."""
    if "title" in data and (not isinstance(data["title"], str) or not data["title"].strip()):
        raise ValueError(f"Authority title for task {task_id} is not a non-empty string")
    description = data.get("description")
    if description is not None and not isinstance(description, str):
        raise ValueError(f"Authority description for task {task_id} is not a string")
    for name in ("completed", "is_deleted"):
        if name in data and not isinstance(data[name], bool):
            raise ValueError(f"Authority {name} for task {task_id} is not a boolean")
