"""Shared plumbing for the sales lifecycle services.

Transitions recorded inside ``unit_of_work`` are held back and only logged,
audited and published once the surrounding store transaction has committed.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Any, NoReturn

from pydantic import BaseModel

from salesflow import audit, events
from salesflow.context import get_actor_id
from salesflow.errors import InvalidStateError
from salesflow.metrics import observe_transition, observe_transition_failure
from salesflow.sales.schemas import utcnow
from salesflow.store.base import EntityStore


logger = logging.getLogger("salesflow.sales")


@dataclass(slots=True)
class _Transition:
    entity_type: str
    entity_id: str
    transition: str
    from_state: str | None
    to_state: str | None
    before: dict[str, Any] | None
    after: dict[str, Any]
    payload: dict[str, Any]
    actor_user_id: str | None


_pending_var: ContextVar[list[_Transition] | None] = ContextVar("sales_pending_transitions", default=None)


@contextmanager
def unit_of_work(store: EntityStore) -> Iterator[None]:
    if _pending_var.get() is not None:
        with store.transaction():
            yield
        return

    pending: list[_Transition] = []
    token = _pending_var.set(pending)
    try:
        with store.transaction():
            yield
    finally:
        _pending_var.reset(token)
    for item in pending:
        _emit(item)


def record_transition(
    entity_type: str,
    record: BaseModel,
    transition: str,
    *,
    before: BaseModel | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    item = _Transition(
        entity_type=entity_type,
        entity_id=str(getattr(record, "id")),
        transition=transition,
        from_state=getattr(before, "statecode", None) if before is not None else None,
        to_state=getattr(record, "statecode", None),
        before=before.model_dump(mode="json") if before is not None else None,
        after=record.model_dump(mode="json"),
        payload=payload or {},
        actor_user_id=get_actor_id(),
    )
    pending = _pending_var.get()
    if pending is not None:
        pending.append(item)
    else:
        _emit(item)


def _emit(item: _Transition) -> None:
    logger.info(
        "sales.transition",
        extra={
            "entity_type": item.entity_type,
            "entity_id": item.entity_id,
            "transition": item.transition,
            "from_state": item.from_state,
            "to_state": item.to_state,
        },
    )
    observe_transition(item.entity_type, item.transition)
    audit.record(
        actor_user_id=item.actor_user_id,
        entity_type=item.entity_type,
        entity_id=item.entity_id,
        transition=item.transition,
        from_state=item.from_state,
        to_state=item.to_state,
        before=item.before,
        after=item.after,
    )
    events.publish(
        {
            "event_type": f"sales.{item.entity_type}.{item.transition}",
            "actor_user_id": item.actor_user_id,
            "payload": {
                f"{item.entity_type}_id": item.entity_id,
                "statecode": item.to_state,
                **item.payload,
            },
        }
    )


def reject(entity_type: str, reason: str, message: str, error: type[InvalidStateError] = InvalidStateError) -> NoReturn:
    observe_transition_failure(entity_type, reason)
    raise error(message)


def ensure_state(entity_type: str, record: Any, allowed: set[str], action: str) -> None:
    if record.statecode not in allowed:
        reject(
            entity_type,
            f"{action}_from_{str(record.statecode).lower()}",
            f"cannot {action} {entity_type} in state {record.statecode}",
        )


def touch(record: Any) -> Any:
    record.modifiedon = utcnow()
    return record


def append_note(existing: str | None, note: str) -> str:
    if existing:
        return f"{existing}\n\n{note}"
    return note


def next_number(store: EntityStore, entity_type: str, field: str, prefix: str, now: datetime | None = None) -> str:
    stamp = (now or utcnow()).strftime("%Y%m%d")
    head = f"{prefix}-{stamp}-"
    taken = {
        getattr(record, field)
        for record in store.list(entity_type)
        if str(getattr(record, field)).startswith(head)
    }
    counter = len(taken) + 1
    while f"{head}{counter:03d}" in taken:
        counter += 1
    return f"{head}{counter:03d}"
