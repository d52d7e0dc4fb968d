from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class SubItem:
    id: Any
    pending_qty: int
    delivered_qty: int


@dataclass(frozen=True)
class DeliveryAllocation:
    sub_item_id: Any
    increment: int
    new_delivered_qty: int


def total_pending(sub_items: Sequence[SubItem]) -> int:
    return sum(max(sub_item.pending_qty, 0) for sub_item in sub_items)


def validate_delivery(qty: int, *, pending_qty: int, available_stock: int) -> None:
    if qty <= 0:
        raise ValueError('Invalid quantity')
    if qty > pending_qty:
        raise ValueError(f'Cannot deliver more than pending ({pending_qty})')
    if qty > available_stock:
        raise ValueError(f'Not enough stock (Available: {available_stock})')


def distribute_delivery(sub_items: Sequence[SubItem], qty: int) -> list[DeliveryAllocation]:
    """Spread a delivered quantity over request rows in listed order.

    Each row takes at most its own pending quantity; the next row is only
    touched once the previous one is fully satisfied.
    """
    if qty <= 0:
        raise ValueError('Invalid quantity')
    pending = total_pending(sub_items)
    if qty > pending:
        raise ValueError(f'Cannot deliver more than pending ({pending})')

    remaining = qty
    allocations: list[DeliveryAllocation] = []
    for sub_item in sub_items:
        if remaining <= 0:
            break
        increment = min(remaining, max(sub_item.pending_qty, 0))
        if increment <= 0:
            continue
        allocations.append(
            DeliveryAllocation(
                sub_item_id=sub_item.id,
                increment=increment,
                new_delivered_qty=sub_item.delivered_qty + increment,
            )
        )
        remaining -= increment
    return allocations
