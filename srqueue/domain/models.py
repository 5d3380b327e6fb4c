"""
Domain models for srqueue — backed by Pydantic v2.

Pydantic handles:
  - JSON serialization / deserialization (via codec.py)
  - camelCase wire names (serviceName, startDate, endDate) next to
    snake_case attribute names
  - datetime parsing (ISO-8601 with timezone)
  - extension fields: any extra key on an entry (e.g. a tenant id used for
    routing) is kept verbatim and round-trips through storage

Entries and documents are frozen (immutable). Mutations return new
instances via model_copy(update=...), following a functional-update style.
"""

import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class EntryState(str, Enum):
    """Lifecycle states for a queue entry."""

    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: frozenset[EntryState] = frozenset(
    {EntryState.DONE, EntryState.FAILED, EntryState.CANCELED}
)


class Responsibility(str, Enum):
    """Answer of a responsibility resolver for one entry."""

    YES = "yes"
    FALLBACK = "fallback"
    NO = "no"


class ExecutionScope(str, Enum):
    PRIVATE = "private"
    PROTECTED = "protected"
    PUBLIC = "public"


class ExecutionContext(BaseModel):
    """
    Context handed to the executor of a claimed entry.

    Only the scope is known to srqueue; hosts add whatever else they need
    (a user, a tenant, ...) as extra fields.
    """

    model_config = ConfigDict(extra="allow")

    scope: ExecutionScope = ExecutionScope.PRIVATE


def new_entry_id() -> str:
    """Store-side id generator. Opaque to everything but the store."""
    return uuid.uuid4().hex


def claim_update(at: datetime) -> dict[str, Any]:
    """Fields a successful claim writes: RUNNING, started at `at`, no end date."""
    return {"state": EntryState.RUNNING, "start_date": at, "end_date": None}


def _as_utc(v: datetime | None) -> datetime | None:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    return v


class QueueEntry(BaseModel):
    """
    A single unit of queued work.

    id           — assigned by the store on first persist, never changes
    service_name — which operation the entry requests
    request      — opaque request payload
    response     — opaque response payload, written by the executor
    state        — current lifecycle state
    start_date   — earliest execution time (None = immediately); overwritten
                   with the claim time when the entry starts running
    end_date     — completion time, set iff the state is terminal
    interval     — recurrence interval in seconds (None = run once)
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str | None = None
    service_name: str
    request: Any = None
    response: Any = None
    state: EntryState = EntryState.READY
    start_date: datetime | None = None
    end_date: datetime | None = None
    interval: int | None = None

    @field_validator("start_date", "end_date", mode="after")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        """Naive datetimes are taken as UTC so comparisons never mix kinds."""
        return _as_utc(v)

    @classmethod
    def new(
        cls,
        service_name: str,
        request: Any = None,
        *,
        start_date: datetime | None = None,
        interval: int | None = None,
        **extension: Any,
    ) -> "QueueEntry":
        """Factory — a READY entry without id; extension kwargs become extra fields."""
        return cls(
            service_name=service_name,
            request=request,
            start_date=start_date,
            interval=interval,
            **extension,
        )

    @property
    def extension(self) -> dict[str, Any]:
        """Extra (routing) fields the core does not interpret."""
        return dict(self.model_extra or {})

    def with_id(self, entry_id: str | None) -> "QueueEntry":
        return self.model_copy(update={"id": entry_id})

    def with_state(self, state: EntryState) -> "QueueEntry":
        """Return a new entry with an updated state."""
        return self.model_copy(update={"state": state})

    def claimed(self, at: datetime) -> "QueueEntry":
        """The RUNNING version of this entry, as written by a successful claim."""
        return self.model_copy(update=claim_update(at))

    def finished(
        self,
        state: EntryState,
        response: Any = None,
        at: datetime | None = None,
    ) -> "QueueEntry":
        """Return the terminal version of this entry, stamped with its end date."""
        if not state.is_terminal:
            raise ValueError(f"{state.value!r} is not a terminal state")
        return self.model_copy(
            update={
                "state": state,
                "response": response,
                "end_date": at or datetime.now(UTC),
            }
        )

    def successor(self) -> "QueueEntry | None":
        """
        The next occurrence of a recurring entry, or None.

        Only the single next run is produced: start_date = end_date + interval,
        regardless of how many intervals have already elapsed.
        """
        if not self.interval or not self.state.is_terminal or self.end_date is None:
            return None
        return self.model_copy(
            update={
                "id": None,
                "state": EntryState.READY,
                "response": None,
                "start_date": self.end_date + timedelta(seconds=self.interval),
                "end_date": None,
            },
            deep=True,
        )


class EntryConditions(BaseModel):
    """
    Query filter over queue entries. All given conditions must hold.

    states             — state membership (None or empty = any state)
    finished_before    — end_date < finished_before
    start_date_reached — start_date is None or < now
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    states: tuple[EntryState, ...] | None = None
    finished_before: datetime | None = None
    start_date_reached: bool = False

    @field_validator("finished_before", mode="after")
    @classmethod
    def _assume_utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    def matches(self, entry: QueueEntry, now: datetime | None = None) -> bool:
        if self.states and entry.state not in self.states:
            return False
        if self.finished_before is not None and (
            entry.end_date is None or not entry.end_date < self.finished_before
        ):
            return False
        if self.start_date_reached and entry.start_date is not None:
            if not entry.start_date < (now or datetime.now(UTC)):
                return False
        return True


class QueueDocument(BaseModel):
    """
    The complete, authoritative content of one entry collection.

    This is exactly what lives in the JSON object on storage.
    Pure value type — all mutations return new instances.

    entries — ordered sequence of entries; insertion order is preserved
    version — monotonically increasing counter, incremented on every write
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[QueueEntry, ...] = ()
    version: int = 0

    # ------------------------------------------------------------------ #
    # Query helpers                                                        #
    # ------------------------------------------------------------------ #

    def find(self, entry_id: str | None) -> QueueEntry | None:
        """Return the entry with the given id, or None if absent."""
        if entry_id is None:
            return None
        return next((e for e in self.entries if e.id == entry_id), None)

    def select(
        self, conditions: EntryConditions | None, now: datetime | None = None
    ) -> tuple[QueueEntry, ...]:
        if conditions is None:
            return self.entries
        now = now or datetime.now(UTC)
        return tuple(e for e in self.entries if conditions.matches(e, now))

    # ------------------------------------------------------------------ #
    # Mutation helpers returning a new QueueDocument                      #
    # ------------------------------------------------------------------ #

    def with_entry_added(self, entry: QueueEntry) -> "QueueDocument":
        """Append an entry and increment version."""
        return self.model_copy(
            update={"entries": self.entries + (entry,), "version": self.version + 1}
        )

    def with_entry_replaced(self, updated: QueueEntry) -> "QueueDocument":
        """Replace the entry with the same id, keeping its position."""
        from srqueue.domain.errors import EntryNotFoundError

        found = False
        new_entries: list[QueueEntry] = []
        for e in self.entries:
            if e.id == updated.id:
                new_entries.append(updated)
                found = True
            else:
                new_entries.append(e)
        if not found:
            raise EntryNotFoundError(updated.id)
        return self.model_copy(
            update={"entries": tuple(new_entries), "version": self.version + 1}
        )

    def with_entries_removed(self, entry_ids: Iterable[str | None]) -> "QueueDocument":
        """Remove entries by id. Returns self unchanged when nothing matches."""
        doomed = set(entry_ids)
        new_entries = tuple(e for e in self.entries if e.id not in doomed)
        if len(new_entries) == len(self.entries):
            return self
        return self.model_copy(
            update={"entries": new_entries, "version": self.version + 1}
        )
