"""Tests for last-write-wins conflict resolution."""

from datetime import datetime, timedelta, timezone

import pytest

from tasksync.models import BatchOutcome, OutcomeStatus, to_iso
from tasksync.sync import ConflictResolver

T1 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(seconds=30)


def local_payload(modified: datetime, **fields) -> dict:
    payload = {
        "id": "task-1",
        "title": "Local title",
        "description": "local",
        "completed": False,
        "is_deleted": False,
        "updated_at": to_iso(modified),
    }
    payload.update(fields)
    return payload


def conflict(modified: datetime | None, **fields) -> BatchOutcome:
    data = {
        "title": "Remote title",
        "description": "remote",
        "completed": True,
        "is_deleted": False,
    }
    if modified is not None:
        data["updated_at"] = to_iso(modified)
    data.update(fields)
    return BatchOutcome(
        task_id="task-1",
        status=OutcomeStatus.CONFLICT,
        server_id="srv-1",
        resolved_data=data,
    )


@pytest.fixture
def resolver():
    return ConflictResolver()


class TestLastWriteWins:
    def test_authority_later_wins_wholesale(self, resolver):
        result = resolver.resolve(local_payload(T1), conflict(T2))

        assert result.winner == "authority"
        assert result.title == "Remote title"
        assert result.description == "remote"
        assert result.completed is True
        assert result.updated_at == T2
        assert result.server_id == "srv-1"

    def test_local_later_wins_wholesale(self, resolver):
        result = resolver.resolve(local_payload(T2), conflict(T1))

        assert result.winner == "local"
        assert result.title == "Local title"
        assert result.description == "local"
        assert result.completed is False
        assert result.updated_at == T2

    def test_no_field_merging(self, resolver):
        """Test a field missing on the winner is not filled from the loser."""
        outcome = conflict(T2)
        del outcome.resolved_data["description"]

        result = resolver.resolve(local_payload(T1), outcome)

        assert result.description is None

    def test_tie_goes_to_authority(self, resolver):
        result = resolver.resolve(local_payload(T1), conflict(T1))

        assert result.winner == "authority"
        assert result.title == "Remote title"

    def test_deterministic_across_call_order(self, resolver):
        """Test the later payload wins whichever side it arrives on."""
        early_local = resolver.resolve(local_payload(T1, title="X"), conflict(T2, title="Y"))
        late_local = resolver.resolve(local_payload(T2, title="Y"), conflict(T1, title="X"))

        assert early_local.title == late_local.title == "Y"
        assert early_local.updated_at == late_local.updated_at == T2

    def test_accepts_zulu_and_naive_timestamps(self, resolver):
        outcome = conflict(None)
        outcome.resolved_data["updated_at"] = "2026-03-01T12:00:30Z"
        payload = local_payload(T1)
        payload["updated_at"] = "2026-03-01T12:00:00"

        result = resolver.resolve(payload, outcome)

        assert result.winner == "authority"
        assert result.updated_at == T2

    def test_naive_local_timestamp_is_utc(self, resolver):
        payload = local_payload(T1)
        payload["updated_at"] = "2026-03-01T12:01:00"

        result = resolver.resolve(payload, conflict(T2))

        assert result.winner == "local"
        assert result.updated_at == T1 + timedelta(minutes=1)

    def test_remote_deletion_wins(self, resolver):
        result = resolver.resolve(local_payload(T1), conflict(T2, is_deleted=True))

        assert result.is_deleted is True


class TestRefusals:
    def test_error_outcome_is_not_resolved(self, resolver):
        outcome = BatchOutcome(
            task_id="task-1", status=OutcomeStatus.ERROR, error="Processing failed"
        )

        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), outcome)

    def test_conflict_without_data(self, resolver):
        outcome = BatchOutcome(task_id="task-1", status=OutcomeStatus.CONFLICT)

        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), outcome)

    def test_conflict_without_timestamp(self, resolver):
        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), conflict(None))

    def test_non_string_timestamp(self, resolver):
        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), conflict(None, updated_at=1772366430000))

    def test_resolved_data_not_an_object(self, resolver):
        outcome = BatchOutcome(
            task_id="task-1", status=OutcomeStatus.CONFLICT, resolved_data=["title", "B"]
        )

        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), outcome)

    @pytest.mark.parametrize(
        "fields",
        [
            {"title": None},
            {"title": "  "},
            {"description": 7},
            {"completed": "false"},
            {"is_deleted": 0},
        ],
    )
    def test_malformed_authority_fields(self, resolver, fields):
        with pytest.raises(ValueError):
            resolver.resolve(local_payload(T1), conflict(T2, **fields))

    def test_malformed_fields_ignored_when_local_wins(self, resolver):
        result = resolver.resolve(local_payload(T2), conflict(T1, completed="false"))

        assert result.winner == "local"
        assert result.completed is False
