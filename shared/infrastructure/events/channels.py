"""
Redis Channel Naming.
"""

from __future__ import annotations


def _validate_positive_id(id_value: int, name: str) -> None:
    if not isinstance(id_value, int) or id_value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {id_value}")


def channel_business_alerts(business_id: int) -> str:
    """Channel for business-facing alerts (abandoned carts, new orders)."""
    _validate_positive_id(business_id, "business_id")
    return f"business:{business_id}:alerts"


def channel_branch_alerts(branch_id: int) -> str:
    """Channel for alerts scoped to a single branch."""
    _validate_positive_id(branch_id, "branch_id")
    return f"branch:{branch_id}:alerts"
