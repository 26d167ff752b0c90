"""
Event Schema.

Defines the Event dataclass published to business channels.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Event:
    """
    Event published to a business.

    The 'entity' field contains event-specific data (order id, totals...).
    The 'actor' field identifies who triggered the event.
    """

    type: str
    business_id: int
    branch_id: int | None = None
    entity: dict[str, Any] = field(default_factory=dict)
    actor: dict[str, Any] = field(default_factory=dict)
    ts: str | None = None
    v: int = 1  # Schema version

    def __post_init__(self) -> None:
        """Reject malformed events before they reach Redis."""
        if not self.type or not isinstance(self.type, str):
            raise ValueError("Event type must be a non-empty string")

        if not isinstance(self.business_id, int) or self.business_id <= 0:
            raise ValueError("Event business_id must be a positive integer")

        if self.branch_id is not None and (not isinstance(self.branch_id, int) or self.branch_id <= 0):
            raise ValueError("Event branch_id must be a positive integer or None")

        if self.entity is not None and not isinstance(self.entity, dict):
            raise ValueError("Event entity must be a dict or None")

        if self.actor is not None and not isinstance(self.actor, dict):
            raise ValueError("Event actor must be a dict or None")

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        data = asdict(self)
        data["entity"] = data["entity"] or {}
        data["actor"] = data["actor"] or {}
        data["ts"] = data["ts"] or datetime.now(timezone.utc).isoformat()
        return json.dumps(data, ensure_ascii=False, default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Deserialize event from JSON string. Validation runs in __post_init__."""
        data = json.loads(json_str)
        return cls(**data)
