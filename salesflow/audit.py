"""Append-only state history for sales records.

One entry per committed transition. Entries carry the state before and after
so a record's lifecycle can be replayed without touching the store.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from salesflow.context import get_correlation_id

audit_entries: list[dict[str, Any]] = []


def record(
    actor_user_id: str | None,
    entity_type: str,
    entity_id: str,
    transition: str,
    *,
    from_state: str | None,
    to_state: str | None,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> dict[str, Any]:
    entry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "transition": transition,
        "from_state": from_state,
        "to_state": to_state,
        "before": before,
        "after": after,
        "correlation_id": get_correlation_id(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    return entry


def history(entity_type: str, entity_id: str) -> list[dict[str, Any]]:
    """Entries for one record, oldest first, without the full snapshots."""
    return [
        {key: value for key, value in entry.items() if key not in {"before", "after"}}
        for entry in audit_entries
        if entry["entity_type"] == entity_type and entry["entity_id"] == entity_id
    ]
