"""Tests for ordered collections and the presentation projections."""

from huddle_dashboard.collection import Item, OrderedCollection
from huddle_dashboard.jobs import FailureReason, JobSnapshot, JobState
from huddle_dashboard.models import JobResult
from huddle_dashboard.projector import (
    SESSION_EXPIRED_MESSAGE,
    UploadPhase,
    project_job,
)


def _snapshot(**overrides) -> JobSnapshot:
    values = dict(slot="default", id="job-1", state=JobState.POLLING)
    values.update(overrides)
    return JobSnapshot(**values)


def test_move_is_remove_then_insert():
    collection = OrderedCollection.from_values("ABCD", key=str)

    assert collection.move(2, 0).keys() == ["C", "A", "B", "D"]
    assert collection.move(0, 3).keys() == ["B", "C", "D", "A"]
    assert collection.keys() == ["A", "B", "C", "D"]


def test_move_with_bad_indices_is_a_no_op():
    collection = OrderedCollection.from_values("ABC", key=str)

    assert collection.move(1, 1) is collection
    assert collection.move(-1, 0) is collection
    assert collection.move(0, 3) is collection


def test_pending_items_are_keyed_by_local_id():
    collection = OrderedCollection().append(
        Item(local_id="temp-1", value="draft", pending=True),
        Item(local_id="m-1", value="sent", server_id="m-1"),
    )

    assert [item.local_id for item in collection.pending()] == ["temp-1"]
    assert collection.find("temp-1").value == "draft"
    assert collection.remove("temp-1").keys() == ["m-1"]
    assert collection.remove("missing") == collection


def test_project_job_phases():
    assert project_job(None).phase is UploadPhase.IDLE
    assert project_job(_snapshot(id=None, state=JobState.SUBMITTED)).phase is UploadPhase.UPLOADING
    assert project_job(_snapshot()).phase is UploadPhase.ANALYZING

    complete = project_job(_snapshot(state=JobState.SUCCEEDED, result=JobResult(decision_count=7)))
    assert complete.phase is UploadPhase.COMPLETE
    assert complete.decision_count == 7


def test_project_job_surfaced_error_keeps_analyzing():
    view = project_job(_snapshot(last_error="Status check failed", consecutive_errors=2))

    assert view.phase is UploadPhase.ANALYZING
    assert view.message == "Status check failed"
    assert view.can_retry is True


def test_project_job_failure_messages():
    denied = _snapshot(
        state=JobState.FAILED,
        failure_reason=FailureReason.AUTHORITATIVE,
        message="Access denied",
        access_denied=True,
    )
    assert project_job(denied).message == SESSION_EXPIRED_MESSAGE

    upload_failed = _snapshot(id=None, state=JobState.FAILED, failure_reason=FailureReason.AUTHORITATIVE)
    assert project_job(upload_failed).message == "Upload failed"

    processing_failed = _snapshot(state=JobState.FAILED, failure_reason=FailureReason.AUTHORITATIVE)
    assert project_job(processing_failed).message == "Processing failed"


def test_job_view_serializes_phase_value():
    data = project_job(_snapshot(state=JobState.SUCCEEDED)).to_dict()
    assert data == {
        "phase": "complete",
        "job_id": "job-1",
        "message": None,
        "decision_count": 0,
        "can_retry": False,
    }
