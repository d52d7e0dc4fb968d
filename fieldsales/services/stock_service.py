from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fieldsales.config import settings
from fieldsales.services.backend_client import (
    BackendClient,
    BackendError,
    BackendUnavailableError,
    Filter,
    Select,
    eq,
    gte,
    in_,
    select_one_or_none,
)
from fieldsales.services.grouping_utils import (
    get_zone,
    group_by_local_date,
    parse_timestamp,
    start_of_local_day,
)

logger = logging.getLogger(__name__)

# Ledger types that move stock into or out of a rep's hands.
REP_ADD_TYPES = frozenset({'OUT', 'RETURN_IN'})
REP_SUBTRACT_TYPES = frozenset({'SALE', 'RETURN', 'TRANSFER_OUT', 'RETURN_TO_HQ'})

STORE_ACTIONS = {'ADD': 'IN', 'RETURN': 'RETURN', 'ISSUE': 'OUT'}


@dataclass
class BatchResult:
    requested: int = 0
    succeeded: int = 0
    failures: list[dict] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {'requested': self.requested, 'succeeded': self.succeeded, 'failures': self.failures}


def _now(now: datetime | None = None) -> datetime:
    return now or datetime.now(tz=timezone.utc)


def normalize_id(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


def positive_quantities(quantities: dict[Any, Any]) -> dict[Any, int]:
    cleaned: dict[Any, int] = {}
    for item_id, raw in quantities.items():
        try:
            qty = int(raw)
        except (TypeError, ValueError):
            continue
        if qty > 0:
            cleaned[normalize_id(item_id)] = qty
    return cleaned


def item_names(backend: BackendClient, item_ids) -> dict[Any, str]:
    ids = list(dict.fromkeys(item_ids))
    if not ids:
        return {}
    rows = backend.select(Select('items', 'id, name').where(in_('id', ids)))
    return {row['id']: row.get('name') or 'Unknown Item' for row in rows}


def rep_stock_balances(transactions: list[dict]) -> dict[Any, int]:
    balances: dict[Any, int] = {}
    for row in transactions:
        qty = int(row.get('qty') or 0)
        kind = (row.get('type') or '').upper()
        if kind in REP_ADD_TYPES:
            balances[row['item_id']] = balances.get(row['item_id'], 0) + qty
        elif kind in REP_SUBTRACT_TYPES:
            balances[row['item_id']] = balances.get(row['item_id'], 0) - qty
    return balances


def rep_balances(backend: BackendClient, *, rep_id: str, item_ids=None) -> dict[Any, int]:
    query = Select('stock_transactions', 'item_id, qty, type').where(eq('rep_id', rep_id))
    if item_ids is not None:
        query = query.where(in_('item_id', list(item_ids)))
    return rep_stock_balances(backend.select(query))


def rep_stock(backend: BackendClient, *, rep_id: str) -> list[dict]:
    balances = rep_balances(backend, rep_id=rep_id)
    items = backend.select(Select('items', 'id, name, unit_of_measure').order('name'))
    return [
        {
            'id': item['id'],
            'name': item.get('name'),
            'unit_of_measure': item.get('unit_of_measure'),
            'qty': balances.get(item['id'], 0),
        }
        for item in items
        if balances.get(item['id'], 0) > 0
    ]


def rep_inventory_history(backend: BackendClient, *, rep_id: str) -> list[dict]:
    transactions = backend.select(
        Select('stock_transactions', 'id, item_id, qty, type, created_at')
        .where(eq('rep_id', rep_id))
        .order('created_at', desc=True)
    )
    names = item_names(backend, (row['item_id'] for row in transactions))
    zone = get_zone(settings.display_timezone)
    groups = group_by_local_date(transactions, timestamp_field='created_at', tz_name=settings.display_timezone)
    return [
        {
            'date': group.label,
            'total_qty': group.total_qty,
            'items': [
                {
                    'id': row['id'],
                    'name': names.get(row['item_id'], 'Unknown Item'),
                    'qty': row['qty'],
                    'type': row['type'],
                    'direction': 'ISSUED' if (row['type'] or '').upper() in REP_ADD_TYPES else 'RETURNED',
                    'time': parse_timestamp(row['created_at']).astimezone(zone).strftime('%I:%M %p'),
                }
                for row in group.rows
            ],
        }
        for group in groups
    ]


def _central_stock_row(backend: BackendClient, item_id) -> dict | None:
    return select_one_or_none(
        backend,
        Select('stock').where(eq('item_id', item_id), Filter('outlet_id', 'is', None)),
    )


def central_stock_qty(backend: BackendClient, item_id) -> int:
    row = _central_stock_row(backend, item_id)
    return int((row or {}).get('qty') or 0)


def _save_central_qty(backend: BackendClient, item_id, qty: int) -> None:
    row = _central_stock_row(backend, item_id)
    if row is None:
        backend.insert('stock', [{'item_id': item_id, 'outlet_id': None, 'qty': qty}])
        return
    backend.update('stock', {'qty': qty}, [eq('id', row['id'])])


def record_store_action(
    backend: BackendClient,
    *,
    action: str,
    item_id,
    qty: int,
    rep_id: str | None = None,
    reference: str | None = None,
    remarks: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Storekeeper ADD / RETURN / ISSUE against the central store."""
    action = (action or '').strip().upper()
    if action not in STORE_ACTIONS:
        raise ValueError(f'Unknown stock action: {action}')
    if not qty or qty <= 0:
        raise ValueError('Please enter a valid quantity.')

    tx_type = STORE_ACTIONS[action]
    final_remarks = (remarks or '').strip()
    final_rep_id = None
    current_qty = central_stock_qty(backend, item_id)

    if action == 'ADD':
        final_remarks = final_remarks or 'Added by storekeeper'
    elif action == 'RETURN':
        final_remarks = f"{reason + ' - ' if reason else ''}{final_remarks}"
    else:
        if current_qty < qty:
            raise ValueError(f'Insufficient stock. Available: {current_qty}')
        if not rep_id:
            raise ValueError('Please select a Representative.')
        rep = select_one_or_none(backend, Select('users', 'id, name').where(eq('id', rep_id)))
        rep_name = (rep or {}).get('name') or 'Unknown Rep'
        final_rep_id = rep_id
        final_remarks = f'Issued to {rep_name} - {final_remarks}'

    transaction = backend.insert(
        'stock_transactions',
        [
            {
                'item_id': item_id,
                'type': tx_type,
                'qty': qty,
                'reference': reference,
                'remarks': final_remarks,
                'rep_id': final_rep_id,
                'created_at': _now(now).isoformat(),
            }
        ],
    )

    new_qty = current_qty - qty if tx_type == 'OUT' else current_qty + qty
    _save_central_qty(backend, item_id, new_qty)
    return {'transaction': transaction[0] if transaction else None, 'new_qty': new_qty}


def _minimum_level(item: dict) -> int:
    level = item.get('minimum_level')
    return int(level) if level else settings.default_minimum_stock_level


def central_inventory(backend: BackendClient) -> list[dict]:
    items = backend.select(Select('items').order('name'))
    stock_rows = backend.select(Select('stock', 'item_id, qty').where(Filter('outlet_id', 'is', None)))
    qty_by_item = {row['item_id']: int(row.get('qty') or 0) for row in stock_rows}
    inventory = []
    for item in items:
        qty = qty_by_item.get(item['id'], 0)
        minimum = _minimum_level(item)
        inventory.append(
            {
                'id': item['id'],
                'name': item.get('name'),
                'unit_of_measure': item.get('unit_of_measure'),
                'qty': qty,
                'minimum_level': minimum,
                'low_stock': qty < minimum,
            }
        )
    return inventory


def storekeeper_dashboard(backend: BackendClient, *, now: datetime | None = None) -> dict:
    inventory = central_inventory(backend)
    since = start_of_local_day(_now(now), settings.display_timezone)
    today = backend.select(Select('stock_transactions', 'type, qty').where(gte('created_at', since.isoformat())))
    return {
        'total_items': len(inventory),
        'low_stock': sum(1 for row in inventory if row['low_stock']),
        'today_issued': sum(int(row.get('qty') or 0) for row in today if row.get('type') == 'OUT'),
        'today_returned': sum(int(row.get('qty') or 0) for row in today if row.get('type') == 'RETURN'),
    }


def storekeeper_history(backend: BackendClient, *, limit: int | None = None) -> list[dict]:
    transactions = backend.select(
        Select('stock_transactions').order('created_at', desc=True).limit(limit or settings.history_limit)
    )
    names = item_names(backend, (row['item_id'] for row in transactions))
    rep_ids = [row['rep_id'] for row in transactions if row.get('rep_id')]
    reps = {}
    if rep_ids:
        reps = {
            row['id']: row.get('name')
            for row in backend.select(Select('users', 'id, name').where(in_('id', list(dict.fromkeys(rep_ids)))))
        }
    groups = group_by_local_date(transactions, timestamp_field='created_at', tz_name=settings.display_timezone)
    return [
        {
            'date': group.label,
            'total_qty': group.total_qty,
            'transactions': [
                {
                    'id': row['id'],
                    'item_name': names.get(row['item_id'], 'Unknown Item'),
                    'type': row.get('type'),
                    'qty': row.get('qty'),
                    'rep_name': reps.get(row.get('rep_id')),
                    'remarks': row.get('remarks'),
                    'reference': row.get('reference'),
                    'created_at': row.get('created_at'),
                }
                for row in group.rows
            ],
        }
        for group in groups
    ]


def outlet_inventory(backend: BackendClient, *, shop_id) -> list[dict]:
    stock_rows = backend.select(Select('stock', 'item_id, qty').where(eq('outlet_id', shop_id)))
    qty_by_item = {row['item_id']: int(row.get('qty') or 0) for row in stock_rows}
    items = backend.select(Select('items').order('name'))
    return [
        {
            'id': item['id'],
            'name': item.get('name'),
            'unit_of_measure': item.get('unit_of_measure'),
            'price': item.get('price'),
            'qty': qty_by_item.get(item['id'], 0),
        }
        for item in items
        if qty_by_item.get(item['id'], 0) > 0
    ]


def _rpc_batch(backend: BackendClient, name: str, calls: list[tuple[Any, dict]]) -> BatchResult:
    result = BatchResult(requested=len(calls))
    for item_id, params in calls:
        try:
            data = backend.rpc(name, params)
        except BackendUnavailableError:
            raise
        except BackendError as exc:
            logger.warning('%s failed for item %s: %s', name, item_id, exc)
            result.failures.append({'item_id': item_id, 'message': exc.message})
            continue
        if isinstance(data, dict) and data.get('success'):
            result.succeeded += 1
        else:
            message = data.get('message') if isinstance(data, dict) else None
            result.failures.append({'item_id': item_id, 'message': message or 'Rejected by server'})
    return result


def transfer_between_shops(
    backend: BackendClient,
    *,
    from_shop_id,
    to_shop_id,
    quantities: dict,
    notes: str | None,
    user_id: str | None,
) -> BatchResult:
    if to_shop_id is None:
        raise ValueError('Please select a destination shop')
    if str(to_shop_id) == str(from_shop_id):
        raise ValueError('Cannot transfer to the same shop')
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please enter quantities to transfer')
    calls = [
        (
            item_id,
            {
                'p_product_id': item_id,
                'p_from_outlet_id': from_shop_id,
                'p_to_outlet_id': to_shop_id,
                'p_quantity': qty,
                'p_notes': notes or 'Manual Transfer',
                'p_user_id': user_id,
            },
        )
        for item_id, qty in cleaned.items()
    ]
    return _rpc_batch(backend, 'transfer_stock', calls)


def process_customer_returns(
    backend: BackendClient,
    *,
    shop_id,
    quantities: dict,
    reasons: dict | None,
    user_id: str | None,
) -> BatchResult:
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please enter return quantities')
    reasons = reasons or {}
    calls = [
        (
            item_id,
            {
                'p_product_id': item_id,
                'p_outlet_id': shop_id,
                'p_quantity': qty,
                'p_reason': reasons.get(item_id) or reasons.get(str(item_id)) or 'Customer Return',
                'p_user_id': user_id,
            },
        )
        for item_id, qty in cleaned.items()
    ]
    return _rpc_batch(backend, 'process_customer_return', calls)


def transfer_salesman_to_rep(
    backend: BackendClient,
    *,
    salesman_id: str,
    rep_id: str,
    quantities: dict,
    notes: str | None = None,
) -> BatchResult:
    if not rep_id:
        raise ValueError('Please select a Representative.')
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please enter quantities to transfer')
    calls = [
        (
            item_id,
            {
                'p_salesman_id': salesman_id,
                'p_rep_id': rep_id,
                'p_product_id': item_id,
                'p_quantity': qty,
                'p_notes': notes or 'Salesman transfer to rep',
            },
        )
        for item_id, qty in cleaned.items()
    ]
    return _rpc_batch(backend, 'transfer_salesman_to_rep', calls)


def return_to_storekeeper(backend: BackendClient, *, rep_id: str, quantities: dict) -> int:
    """Returns every selected item to the central store, stopping at the first failure."""
    if not rep_id:
        raise ValueError('Rep ID not found')
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please select at least one item to return')
    balances = rep_balances(backend, rep_id=rep_id, item_ids=cleaned.keys())
    for item_id, qty in cleaned.items():
        if qty > balances.get(item_id, 0):
            raise ValueError(f'Cannot return more than you hold (Available: {balances.get(item_id, 0)})')
    for item_id, qty in cleaned.items():
        backend.rpc(
            'return_rep_to_storekeeper',
            {'p_rep_id': rep_id, 'p_product_id': item_id, 'p_quantity': qty, 'p_notes': 'Rep Return to HQ'},
        )
    return len(cleaned)
