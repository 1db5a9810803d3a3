from __future__ import annotations

"""
Derive order-set suggestions from merged evidence.

Design intent:
- Only labs/tests and treatments promote to orders; classification is a fixed keyword rule.
- New orders lead the list and share the evidence merge bound; duplicates are not inspected.
- Status moves forward only. STAT is never derived here.
"""

from typing import Any, Literal, Sequence

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from scribe.evidence.models import MedicalInsight, MedicalSuggestions

OrderType = Literal["Medication", "Lab", "Imaging", "Referral", "Procedure"]
OrderPriority = Literal["STAT", "Urgent", "Routine"]
OrderStatus = Literal["suggested", "pending", "ordered"]

ORDER_CAP = 10
ORDER_RATIONALE = "AI Suggested based on clinical findings"
IMAGING_KEYWORDS: tuple[str, ...] = ("x-ray", "mri", "ct")

_STATUS_RANK: dict[str, int] = {"suggested": 0, "pending": 1, "ordered": 2}


class OrderItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: OrderType
    name: str
    details: str = ""
    priority: OrderPriority = "Routine"
    rationale: str = ORDER_RATIONALE
    status: OrderStatus = "suggested"


def classify_order_type(title: str) -> OrderType:
    # Plain substring match, so "ct" also hits words like "infarct".
    lowered = str(title or "").lower()
    if any(keyword in lowered for keyword in IMAGING_KEYWORDS):
        return "Imaging"
    return "Lab"


def _priority_for(insight: MedicalInsight) -> OrderPriority:
    return "Urgent" if insight.confidence == "High" else "Routine"


def derive_orders(update: MedicalSuggestions, *, now_ms: int, batch: int | None = None) -> list[OrderItem]:
    """
    Build orders from the labs/tests and treatments of a single merged update.

    Ids are `lab-{now_ms}-{n}` and `tx-{now_ms}-{n}`; passing `batch` inserts it after the
    timestamp so several updates applied in the same millisecond stay distinct.
    """
    stamp = f"{int(now_ms)}-{batch}" if batch is not None else str(int(now_ms))
    orders: list[OrderItem] = []
    for index, insight in enumerate(update.suggested_labs_and_tests):
        orders.append(
            OrderItem(
                id=f"lab-{stamp}-{index}",
                type=classify_order_type(insight.title),
                name=insight.title,
                details=insight.details,
                priority=_priority_for(insight),
            )
        )
    for index, insight in enumerate(update.potential_treatments):
        orders.append(
            OrderItem(
                id=f"tx-{stamp}-{index}",
                type="Medication",
                name=insight.title,
                details=insight.details,
                priority=_priority_for(insight),
            )
        )
    return orders


def merge_orders(
    existing: Sequence[OrderItem],
    new_orders: Sequence[OrderItem],
    *,
    cap: int = ORDER_CAP,
) -> list[OrderItem]:
    return (list(new_orders) + list(existing))[:cap]


def advance_order_status(
    orders: Sequence[OrderItem],
    order_id: str,
    status: OrderStatus,
) -> tuple[list[OrderItem], dict[str, Any]]:
    """
    Move one order forward in its lifecycle.

    Unknown ids and backward moves leave the list untouched; `debug["applied"]` reports which.
    """
    out = list(orders)
    debug: dict[str, Any] = {"order_id": order_id, "requested": status, "applied": False, "reason": "not_found"}
    if status not in _STATUS_RANK:
        debug["reason"] = "invalid_status"
        return out, debug

    for index, order in enumerate(out):
        if order.id != order_id:
            continue
        debug["previous"] = order.status
        if _STATUS_RANK[status] <= _STATUS_RANK[order.status]:
            debug["reason"] = "not_forward"
            return out, debug
        out[index] = order.model_copy(update={"status": status})
        debug["applied"] = True
        debug["reason"] = "ok"
        return out, debug
    return out, debug
