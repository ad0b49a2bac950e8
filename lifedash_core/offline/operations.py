# =============================================================================
# lifedash_core/offline/operations.py
# Queued Mutation Types
# =============================================================================
"""
Mutation variants carried by the sync queue.

A queued mutation is exactly one of::

    Create(record)            -> remote insert
    Update(record_id, patch)  -> remote update by id
    Delete(record_id)         -> remote delete by id

Persistence uses the (operation, record_id, payload) row shape of the
``sync_queue`` table; ``mutation_to_row`` / ``mutation_from_row`` convert.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


class OperationType(Enum):
    """Remote operation a queued mutation replays as."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Create:
    """Insert a new record (may still carry a temporary local id)."""
    record: Dict[str, Any]
    operation: ClassVar[OperationType] = OperationType.CREATE

    @property
    def record_id(self) -> Any:
        return self.record.get("id")


@dataclass(frozen=True)
class Update:
    """Apply a field patch to an existing record."""
    record_id: Any
    patch: Dict[str, Any] = field(default_factory=dict)
    operation: ClassVar[OperationType] = OperationType.UPDATE


@dataclass(frozen=True)
class Delete:
    """Remove a record."""
    record_id: Any
    operation: ClassVar[OperationType] = OperationType.DELETE


Mutation = Union[Create, Update, Delete]


def mutation_to_row(mutation: Mutation) -> Tuple[str, Optional[str], Dict[str, Any]]:
    """
    Flatten a mutation into (operation, record_id, payload) for storage.

    Raises:
        TypeError: If given something that is not a Mutation
    """
    if isinstance(mutation, Create):
        record_id = mutation.record_id
        return mutation.operation.value, _key(record_id), dict(mutation.record)
    if isinstance(mutation, Update):
        # The original id is kept in the payload so int ids survive the TEXT column
        payload = {**mutation.patch, "id": mutation.record_id}
        return mutation.operation.value, _key(mutation.record_id), payload
    if isinstance(mutation, Delete):
        return mutation.operation.value, _key(mutation.record_id), {"id": mutation.record_id}
    raise TypeError(f"Not a mutation: {mutation!r}")


def mutation_from_row(operation: str, record_id: Optional[str], payload: Dict[str, Any]) -> Mutation:
    """
    Rebuild a mutation from its stored row.

    Raises:
        ValueError: If the operation name is unknown
    """
    op = OperationType(operation)
    if op is OperationType.CREATE:
        return Create(record=dict(payload))
    if op is OperationType.UPDATE:
        return Update(record_id=payload.get("id", record_id), patch=dict(payload))
    return Delete(record_id=payload.get("id", record_id))


def with_record_id(mutation: Mutation, new_id: Any) -> Mutation:
    """Return a copy of the mutation pointed at a different record id."""
    if isinstance(mutation, Create):
        return Create(record={**mutation.record, "id": new_id})
    if isinstance(mutation, Update):
        patch = dict(mutation.patch)
        if "id" in patch:
            patch["id"] = new_id
        return replace(mutation, record_id=new_id, patch=patch)
    if isinstance(mutation, Delete):
        return replace(mutation, record_id=new_id)
    raise TypeError(f"Not a mutation: {mutation!r}")


def _key(record_id: Any) -> Optional[str]:
    return None if record_id is None else str(record_id)


@dataclass(frozen=True)
class OutboxEntry:
    """
    One pending mutation in the sync queue.

    ``seq`` is the queue's own auto-assigned sequence number and is unrelated
    to the record's id.
    """
    seq: int
    collection: str
    mutation: Mutation
    enqueued_at: str
    retry_count: int = 0
    last_error: Optional[str] = None

    @property
    def operation(self) -> OperationType:
        return self.mutation.operation

    @property
    def record_id(self) -> Any:
        return self.mutation.record_id

    def describe(self) -> str:
        return f"{self.operation.value} {self.collection}/{self.record_id} (#{self.seq})"
