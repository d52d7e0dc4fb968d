from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fieldsales.config import settings
from fieldsales.services.backend_client import BackendClient, Select, eq, in_, select_one_or_none
from fieldsales.services.delivery_math_service import SubItem, distribute_delivery, validate_delivery
from fieldsales.services.grouping_utils import (
    parse_timestamp,
    relative_day_label,
    to_local_date,
    format_date_label,
    to_number,
)
from fieldsales.services.shop_service import shop_name, shops_for_rep
from fieldsales.services.stock_service import item_names, normalize_id, positive_quantities, rep_balances

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_COMPLETED = 'completed'

TAB_PENDING = 'pending'
TAB_HISTORY = 'history'


@dataclass
class RequestLineGroup:
    """Request rows for one item on one local date, as the rep sees them."""

    key: str
    item_id: Any
    item_name: str
    request_date: str
    available_stock: int
    qty: int = 0
    delivered_qty: int = 0
    pending_qty: int = 0
    sub_items: list[SubItem] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'key': self.key,
            'item_id': self.item_id,
            'item_name': self.item_name,
            'qty': self.qty,
            'delivered_qty': self.delivered_qty,
            'pending_qty': self.pending_qty,
            'available_stock': self.available_stock,
            'status': STATUS_PENDING if self.pending_qty > 0 else STATUS_COMPLETED,
            'request_date': self.request_date,
            'sub_items': [
                {'id': sub.id, 'pending_qty': sub.pending_qty, 'delivered_qty': sub.delivered_qty}
                for sub in self.sub_items
            ],
        }


def _now(now: datetime | None = None) -> datetime:
    return now or datetime.now(tz=timezone.utc)


def _request_date(request: dict) -> str | None:
    return request.get('date') or request.get('created_at')


def _pending_of(row: dict) -> int:
    return int(row.get('qty') or 0) - int(row.get('delivered_qty') or 0)


def create_request(
    backend: BackendClient,
    *,
    shop_id,
    salesman_id: str,
    quantities: dict,
    now: datetime | None = None,
) -> dict:
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please add at least one item')
    if shop_id is None:
        raise ValueError('Shop is required')

    created = backend.insert(
        'requests',
        [{'shop_id': shop_id, 'salesman_id': salesman_id, 'status': STATUS_PENDING, 'date': _now(now).isoformat()}],
    )
    if not created:
        raise ValueError('Failed to create request')
    request = created[0]
    request['items'] = backend.insert(
        'request_items',
        [
            {'request_id': request['id'], 'item_id': item_id, 'qty': qty, 'delivered_qty': 0}
            for item_id, qty in cleaned.items()
        ],
    )
    logger.info('Request %s created for shop %s with %d items', request['id'], shop_id, len(cleaned))
    return request


def _get_request(backend: BackendClient, request_id) -> dict:
    request = select_one_or_none(backend, Select('requests').where(eq('id', request_id)))
    if not request:
        raise LookupError('Request not found')
    return request


def get_request_for_edit(backend: BackendClient, *, request_id) -> dict:
    request = _get_request(backend, request_id)
    if request.get('status') != STATUS_PENDING:
        raise ValueError('This request is no longer pending and cannot be edited.')
    rows = backend.select(Select('request_items', 'item_id, qty').where(eq('request_id', request_id)))
    return {
        'request': request,
        'shop_name': shop_name(backend, request['shop_id']) if request.get('shop_id') else None,
        'quantities': {row['item_id']: row['qty'] for row in rows},
    }


def update_request_items(backend: BackendClient, *, request_id, quantities: dict) -> list[dict]:
    request = _get_request(backend, request_id)
    if request.get('status') != STATUS_PENDING:
        raise ValueError('This request is no longer pending and cannot be edited.')
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please add at least one item')

    backend.delete('request_items', [eq('request_id', request_id)])
    return backend.insert(
        'request_items',
        [
            {'request_id': request_id, 'item_id': item_id, 'qty': qty, 'delivered_qty': 0}
            for item_id, qty in cleaned.items()
        ],
    )


def _progress(lines: list[dict]) -> str:
    delivered = sum(line['delivered_qty'] for line in lines)
    pending = sum(line['pending_qty'] for line in lines)
    if pending <= 0 and lines:
        return 'completed'
    if delivered > 0:
        return 'partial'
    return 'pending'


def list_salesman_requests(backend: BackendClient, *, salesman_id: str) -> list[dict]:
    requests = backend.select(Select('requests').where(eq('salesman_id', salesman_id)).order('date', desc=True))
    if not requests:
        return []
    request_ids = [row['id'] for row in requests]
    rows = backend.select(Select('request_items').where(in_('request_id', request_ids)))
    names = item_names(backend, (row['item_id'] for row in rows))
    shop_ids = list(dict.fromkeys(row['shop_id'] for row in requests if row.get('shop_id') is not None))
    shops = {}
    if shop_ids:
        shops = {row['id']: row.get('name') for row in backend.select(Select('shops', 'id, name').where(in_('id', shop_ids)))}

    lines_by_request: dict[Any, list[dict]] = {request_id: [] for request_id in request_ids}
    for row in rows:
        lines_by_request.setdefault(row['request_id'], []).append(
            {
                'item_id': row['item_id'],
                'item_name': names.get(row['item_id'], 'Unknown Item'),
                'qty': int(row.get('qty') or 0),
                'delivered_qty': int(row.get('delivered_qty') or 0),
                'pending_qty': max(_pending_of(row), 0),
            }
        )

    history = []
    for request in requests:
        lines = lines_by_request.get(request['id'], [])
        history.append(
            {
                'id': request['id'],
                'shop_id': request.get('shop_id'),
                'shop_name': shops.get(request.get('shop_id'), 'Unknown Shop'),
                'status': request.get('status'),
                'date': _request_date(request),
                'date_label': format_date_label(to_local_date(_request_date(request), settings.display_timezone))
                if _request_date(request)
                else None,
                'progress': _progress(lines),
                'total_qty': sum(line['qty'] for line in lines),
                'delivered_qty': sum(line['delivered_qty'] for line in lines),
                'lines': lines,
            }
        )
    return history


def salesman_stats(backend: BackendClient, *, user_id: str, shop_id=None) -> dict:
    requests = backend.select(Select('requests', 'status').where(eq('salesman_id', user_id)))
    total_income = to_number(0)
    if shop_id is not None:
        incomes = backend.select(Select('daily_income', 'total_sales').where(eq('shop_id', shop_id)))
        total_income = sum((to_number(row.get('total_sales')) for row in incomes), to_number(0))
    return {
        'total_requests': len(requests),
        'pending_requests': sum(1 for row in requests if row.get('status') == STATUS_PENDING),
        'total_income': total_income,
    }


def list_pending_requests_for_rep(backend: BackendClient, *, rep_id: str, now: datetime | None = None) -> list[dict]:
    shops = shops_for_rep(backend, rep_id=rep_id)
    if not shops:
        return []
    names = {shop['id']: shop['name'] for shop in shops}
    requests = backend.select(
        Select('requests', 'id, shop_id, date, created_at')
        .where(eq('status', STATUS_PENDING), in_('shop_id', list(names)))
        .order('created_at', desc=True)
    )
    if not requests:
        return []
    rows = backend.select(Select('request_items', 'request_id').where(in_('request_id', [row['id'] for row in requests])))
    item_counts: dict[Any, int] = {}
    for row in rows:
        item_counts[row['request_id']] = item_counts.get(row['request_id'], 0) + 1

    sections: dict[str, list[dict]] = {}
    current = _now(now)
    for request in requests:
        stamp = request.get('created_at') or request.get('date')
        label = relative_day_label(stamp, now=current, tz_name=settings.display_timezone)
        sections.setdefault(label, []).append(
            {
                'id': request['id'],
                'shop_id': request['shop_id'],
                'shop_name': names.get(request['shop_id'], 'Unknown Shop'),
                'date': request.get('date'),
                'created_at': request.get('created_at'),
                'item_count': item_counts.get(request['id'], 0),
            }
        )
    return [{'title': title, 'requests': data} for title, data in sections.items()]


def build_request_groups(
    requests: list[dict],
    rows: list[dict],
    *,
    tab: str,
    names: dict,
    stock: dict,
    tz_name: str | None,
) -> list[dict]:
    """Group request rows by local request date, then by item."""
    date_by_request = {request['id']: _request_date(request) for request in requests}
    sections: dict[str, dict[Any, RequestLineGroup]] = {}
    for row in rows:
        pending = _pending_of(row)
        delivered = int(row.get('delivered_qty') or 0)
        if tab == TAB_PENDING and pending <= 0:
            continue
        if tab == TAB_HISTORY and delivered == 0:
            continue
        stamp = date_by_request.get(row['request_id'])
        day = to_local_date(stamp, tz_name)
        if day is None:
            continue
        label = format_date_label(day)
        groups = sections.setdefault(label, {})
        group = groups.get(row['item_id'])
        if group is None:
            group = groups[row['item_id']] = RequestLineGroup(
                key=f"{label}-{row['item_id']}",
                item_id=row['item_id'],
                item_name=names.get(row['item_id'], 'Unknown Item'),
                request_date=stamp,
                available_stock=stock.get(row['item_id'], 0),
            )
        group.qty += int(row.get('qty') or 0)
        group.delivered_qty += delivered
        group.pending_qty += pending
        group.sub_items.append(SubItem(id=row['id'], pending_qty=pending, delivered_qty=delivered))

    ordered = sorted(
        sections.items(),
        key=lambda entry: parse_timestamp(next(iter(entry[1].values())).request_date),
        reverse=True,
    )
    return [{'title': title, 'groups': list(groups.values())} for title, groups in ordered]


def shop_request_sections(backend: BackendClient, *, shop_id, rep_id: str | None, tab: str = TAB_PENDING) -> dict:
    if tab not in {TAB_PENDING, TAB_HISTORY}:
        raise ValueError(f'Unknown tab: {tab}')
    query = Select('requests', 'id, date, created_at').where(eq('shop_id', shop_id)).order('date', desc=True)
    if tab == TAB_PENDING:
        query = query.where(eq('status', STATUS_PENDING))
    else:
        query = query.limit(settings.history_limit)

    result = {'shop_name': shop_name(backend, shop_id), 'tab': tab, 'sections': []}
    requests = backend.select(query)
    if not requests:
        return result
    rows = backend.select(Select('request_items').where(in_('request_id', [row['id'] for row in requests])))
    item_ids = list(dict.fromkeys(row['item_id'] for row in rows))
    names = item_names(backend, item_ids)
    if rep_id:
        stock = rep_balances(backend, rep_id=rep_id, item_ids=item_ids) if item_ids else {}
    else:
        logger.warning('No rep id for shop %s request view; stock will show as 0', shop_id)
        stock = {}
    result['sections'] = build_request_groups(
        requests,
        rows,
        tab=tab,
        names=names,
        stock=stock,
        tz_name=settings.display_timezone,
    )
    return result


def _complete_finished_requests(backend: BackendClient, request_ids) -> list:
    completed = []
    for request_id in dict.fromkeys(request_ids):
        rows = backend.select(Select('request_items', 'qty, delivered_qty').where(eq('request_id', request_id)))
        if rows and all(_pending_of(row) <= 0 for row in rows):
            backend.update('requests', {'status': STATUS_COMPLETED}, [eq('id', request_id)])
            completed.append(request_id)
    return completed


def deliver(
    backend: BackendClient,
    *,
    shop_id,
    rep_id: str,
    date_label: str,
    item_id,
    qty: int,
) -> dict:
    """Issue stock against one item group of a shop's pending requests."""
    view = shop_request_sections(backend, shop_id=shop_id, rep_id=rep_id, tab=TAB_PENDING)
    item_id = normalize_id(item_id)
    group = None
    for section in view['sections']:
        if section['title'] != date_label:
            continue
        for candidate in section['groups']:
            if candidate.item_id == item_id:
                group = candidate
    if group is None:
        raise LookupError('No pending request line for this item and date')

    validate_delivery(qty, pending_qty=group.pending_qty, available_stock=group.available_stock)
    allocations = distribute_delivery(group.sub_items, qty)
    for allocation in allocations:
        backend.update('request_items', {'delivered_qty': allocation.new_delivered_qty}, [eq('id', allocation.sub_item_id)])

    touched = backend.select(
        Select('request_items', 'request_id').where(in_('id', [allocation.sub_item_id for allocation in allocations]))
    )
    completed = _complete_finished_requests(backend, [row['request_id'] for row in touched])
    logger.info('Rep %s delivered %d of item %s to shop %s', rep_id, qty, item_id, shop_id)
    return {
        'delivered': qty,
        'allocations': [
            {'request_item_id': a.sub_item_id, 'increment': a.increment, 'delivered_qty': a.new_delivered_qty}
            for a in allocations
        ],
        'completed_requests': completed,
    }
