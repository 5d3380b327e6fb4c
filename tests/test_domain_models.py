from datetime import UTC, datetime, timedelta

import pytest

from srqueue.domain.errors import EntryNotFoundError
from srqueue.domain.models import (
    TERMINAL_STATES,
    EntryConditions,
    EntryState,
    ExecutionContext,
    ExecutionScope,
    QueueDocument,
    QueueEntry,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _entry(entry_id: str, state: EntryState = EntryState.READY, **kw) -> QueueEntry:
    return QueueEntry(id=entry_id, service_name="svc", state=state, **kw)


# ---------------------------------------------------------------------------
# EntryState
# ---------------------------------------------------------------------------


def test_terminal_states():
    assert TERMINAL_STATES == {EntryState.DONE, EntryState.FAILED, EntryState.CANCELED}
    assert EntryState.DONE.is_terminal
    assert not EntryState.READY.is_terminal
    assert not EntryState.RUNNING.is_terminal


def test_state_values_are_lowercase_strings():
    assert [s.value for s in EntryState] == [
        "ready",
        "running",
        "done",
        "failed",
        "canceled",
    ]


# ---------------------------------------------------------------------------
# QueueEntry
# ---------------------------------------------------------------------------


def test_new_entry_defaults():
    entry = QueueEntry.new("reports/build", {"a": 1})
    assert entry.id is None
    assert entry.state == EntryState.READY
    assert entry.request == {"a": 1}
    assert entry.response is None
    assert entry.start_date is None
    assert entry.end_date is None
    assert entry.interval is None


def test_entry_is_frozen():
    entry = QueueEntry.new("svc")
    with pytest.raises(Exception):
        entry.state = EntryState.RUNNING  # type: ignore[misc]


def test_extension_fields_are_kept():
    entry = QueueEntry.new("svc", mandatorId="0815")
    assert entry.mandatorId == "0815"  # type: ignore[attr-defined]
    assert entry.extension == {"mandatorId": "0815"}


def test_wire_names_are_camel_case():
    entry = QueueEntry.new("svc", start_date=NOW)
    data = entry.model_dump(by_alias=True)
    assert data["serviceName"] == "svc"
    assert data["startDate"] == NOW
    assert "endDate" in data
    assert "service_name" not in data


def test_validates_from_wire_names():
    entry = QueueEntry.model_validate(
        {"serviceName": "svc", "state": "running", "startDate": "2024-05-01T12:00:00Z"}
    )
    assert entry.service_name == "svc"
    assert entry.state == EntryState.RUNNING
    assert entry.start_date == NOW


def test_naive_datetimes_are_taken_as_utc():
    entry = QueueEntry.new("svc", start_date=datetime(2024, 5, 1, 12, 0))
    assert entry.start_date == NOW
    assert entry.start_date.tzinfo is not None


def test_finished_sets_state_response_and_end_date():
    entry = _entry("a", EntryState.RUNNING)
    done = entry.finished(EntryState.DONE, {"b": 2}, at=NOW)
    assert done.state == EntryState.DONE
    assert done.response == {"b": 2}
    assert done.end_date == NOW
    assert entry.state == EntryState.RUNNING  # original unchanged


def test_finished_defaults_end_date_to_now():
    before = datetime.now(UTC)
    done = _entry("a", EntryState.RUNNING).finished(EntryState.FAILED, "Error: x")
    assert done.end_date is not None
    assert done.end_date >= before


def test_finished_rejects_non_terminal_state():
    with pytest.raises(ValueError):
        _entry("a").finished(EntryState.RUNNING)


def test_claimed_marks_running_with_start_date():
    claimed = _entry("a").claimed(NOW)
    assert claimed.state == EntryState.RUNNING
    assert claimed.start_date == NOW


# ---------------------------------------------------------------------------
# successor
# ---------------------------------------------------------------------------


def test_successor_starts_one_interval_after_end():
    done = _entry("a", EntryState.RUNNING, interval=300, request={"x": 1}).finished(
        EntryState.DONE, {"ok": True}, at=NOW
    )
    nxt = done.successor()
    assert nxt is not None
    assert nxt.id is None
    assert nxt.state == EntryState.READY
    assert nxt.start_date == NOW + timedelta(seconds=300)
    assert nxt.end_date is None
    assert nxt.response is None
    assert nxt.request == {"x": 1}
    assert nxt.interval == 300


def test_successor_keeps_extension_fields():
    done = _entry("a", EntryState.RUNNING, interval=60, mandatorId="0815").finished(
        EntryState.DONE, at=NOW
    )
    nxt = done.successor()
    assert nxt is not None
    assert nxt.mandatorId == "0815"  # type: ignore[attr-defined]


def test_successor_does_not_share_request_payload():
    done = _entry("a", EntryState.RUNNING, interval=60, request={"x": [1]}).finished(
        EntryState.DONE, at=NOW
    )
    nxt = done.successor()
    assert nxt is not None
    nxt.request["x"].append(2)
    assert done.request == {"x": [1]}


def test_no_successor_without_interval():
    done = _entry("a", EntryState.RUNNING).finished(EntryState.DONE, at=NOW)
    assert done.successor() is None


def test_no_successor_for_unfinished_entry():
    assert _entry("a", interval=60).successor() is None


# ---------------------------------------------------------------------------
# EntryConditions
# ---------------------------------------------------------------------------


def test_empty_conditions_match_everything():
    conditions = EntryConditions()
    assert conditions.matches(_entry("a"))
    assert conditions.matches(_entry("b", EntryState.DONE, end_date=NOW))


def test_states_condition():
    conditions = EntryConditions(states=(EntryState.READY, EntryState.RUNNING))
    assert conditions.matches(_entry("a"))
    assert conditions.matches(_entry("a", EntryState.RUNNING))
    assert not conditions.matches(_entry("a", EntryState.DONE, end_date=NOW))


def test_finished_before_is_strict():
    conditions = EntryConditions(finished_before=NOW)
    assert conditions.matches(_entry("a", EntryState.DONE, end_date=NOW - timedelta(seconds=1)))
    assert not conditions.matches(_entry("a", EntryState.DONE, end_date=NOW))
    assert not conditions.matches(_entry("a", EntryState.RUNNING))


def test_start_date_reached():
    conditions = EntryConditions(start_date_reached=True)
    assert conditions.matches(_entry("a"), now=NOW)
    assert conditions.matches(_entry("a", start_date=NOW - timedelta(seconds=1)), now=NOW)
    assert not conditions.matches(_entry("a", start_date=NOW), now=NOW)
    assert not conditions.matches(_entry("a", start_date=NOW + timedelta(hours=1)), now=NOW)


def test_conditions_compose():
    conditions = EntryConditions(
        states=(EntryState.DONE,), finished_before=NOW
    )
    assert conditions.matches(_entry("a", EntryState.DONE, end_date=NOW - timedelta(days=1)))
    assert not conditions.matches(
        _entry("a", EntryState.FAILED, end_date=NOW - timedelta(days=1))
    )


def test_conditions_accept_wire_names():
    conditions = EntryConditions.model_validate(
        {"states": ["done"], "finishedBefore": "2024-05-01T12:00:00Z", "startDateReached": True}
    )
    assert conditions.states == (EntryState.DONE,)
    assert conditions.finished_before == NOW
    assert conditions.start_date_reached is True


# ---------------------------------------------------------------------------
# QueueDocument
# ---------------------------------------------------------------------------


def test_document_add_and_find():
    doc = QueueDocument().with_entry_added(_entry("a"))
    assert doc.version == 1
    assert doc.find("a") is not None
    assert doc.find("missing") is None
    assert doc.find(None) is None


def test_document_replace_keeps_position():
    doc = QueueDocument(entries=(_entry("a"), _entry("b"), _entry("c")))
    doc = doc.with_entry_replaced(_entry("b", EntryState.RUNNING))
    assert [e.id for e in doc.entries] == ["a", "b", "c"]
    assert doc.entries[1].state == EntryState.RUNNING
    assert doc.version == 1


def test_document_replace_missing_raises():
    with pytest.raises(EntryNotFoundError):
        QueueDocument().with_entry_replaced(_entry("x"))


def test_document_remove_entries():
    doc = QueueDocument(entries=(_entry("a"), _entry("b"), _entry("c")))
    doc = doc.with_entries_removed(["a", "c"])
    assert [e.id for e in doc.entries] == ["b"]
    assert doc.version == 1


def test_document_remove_nothing_returns_same_instance():
    doc = QueueDocument(entries=(_entry("a"),))
    assert doc.with_entries_removed(["zzz"]) is doc


def test_document_select_preserves_order():
    doc = QueueDocument(
        entries=(
            _entry("a"),
            _entry("b", EntryState.DONE, end_date=NOW),
            _entry("c"),
        )
    )
    ready = doc.select(EntryConditions(states=(EntryState.READY,)))
    assert [e.id for e in ready] == ["a", "c"]
    assert doc.select(None) == doc.entries


# ---------------------------------------------------------------------------
# ExecutionContext
# ---------------------------------------------------------------------------


def test_execution_context_defaults_to_private():
    assert ExecutionContext().scope == ExecutionScope.PRIVATE


def test_execution_context_allows_extra_fields():
    context = ExecutionContext(scope="public", user="alice")
    assert context.scope == ExecutionScope.PUBLIC
    assert context.user == "alice"  # type: ignore[attr-defined]
