from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from fieldsales.config import settings
from fieldsales.services.backend_client import BackendClient, Select, eq, gte, in_
from fieldsales.services.grouping_utils import (
    WEEKDAY_ABBR,
    daily_series,
    local_date_label,
    parse_timestamp,
    start_of_local_day,
    sum_by,
    to_local_date,
    to_number,
    weekday_label,
)
from fieldsales.services.stock_service import central_inventory, item_names, positive_quantities

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = {'week': 7, 'month': 30}
WALK_IN_CUSTOMER = 'Walk-in Customer'
TOP_SHOP_LIMIT = 5
LOW_STOCK_ALERT_LIMIT = 3


def _now(now: datetime | None = None) -> datetime:
    return now or datetime.now(tz=timezone.utc)


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal('0.01')))


def submit_sale(
    backend: BackendClient,
    *,
    shop_id,
    user_id: str,
    quantities: dict,
    now: datetime | None = None,
) -> dict:
    """Record a walk-in cash sale priced from the item catalogue."""
    cleaned = positive_quantities(quantities)
    if not cleaned:
        raise ValueError('Please add at least one item')
    if shop_id is None:
        raise ValueError('Shop is required')

    items = {row['id']: row for row in backend.select(Select('items', 'id, name, price').where(in_('id', list(cleaned))))}
    missing = [item_id for item_id in cleaned if item_id not in items]
    if missing:
        raise ValueError(f'Unknown item(s): {", ".join(str(item_id) for item_id in missing)}')

    lines = []
    total = Decimal('0')
    for item_id, qty in cleaned.items():
        unit_price = to_number(items[item_id].get('price'))
        line_total = unit_price * qty
        total += line_total
        lines.append({'item_id': item_id, 'qty': qty, 'unit_price': _money(unit_price), 'line_total': _money(line_total)})

    stamp = _now(now).isoformat()
    created = backend.insert(
        'sales',
        [
            {
                'outlet_id': shop_id,
                'customer_name': WALK_IN_CUSTOMER,
                'total_amount': _money(total),
                'subtotal': _money(total),
                'payment_method': 'cash',
                'payment_status': 'paid',
                'amount_paid': _money(total),
                'amount_due': 0,
                'sale_date': stamp,
                'created_by': user_id,
            }
        ],
    )
    if not created:
        raise ValueError('Failed to record sale')
    sale = created[0]
    sale['items'] = backend.insert('sale_items', [dict(line, sale_id=sale['id']) for line in lines])
    logger.info('Sale %s recorded for shop %s: %s', sale['id'], shop_id, sale['total_amount'])
    return sale


def sales_analytics(
    backend: BackendClient,
    *,
    user_id: str,
    period: str = 'week',
    now: datetime | None = None,
) -> dict:
    days = ANALYTICS_PERIODS.get(period)
    if days is None:
        raise ValueError(f'Unknown period: {period}')
    current = _now(now)
    since = start_of_local_day(current, settings.display_timezone) - timedelta(days=days - 1)
    rows = backend.select(
        Select('sales', 'id, total_amount, created_at')
        .where(eq('created_by', user_id), gte('created_at', since.isoformat()))
        .order('created_at')
    )
    series = daily_series(
        rows,
        days=days,
        now=current,
        tz_name=settings.display_timezone,
        timestamp_field='created_at',
        value_field='total_amount',
    )
    revenue = sum((to_number(row.get('total_amount')) for row in rows), Decimal('0'))
    return {
        'period': period,
        'total_revenue': _money(revenue),
        'sale_count': len(rows),
        'series': [
            {'date': day.isoformat(), 'label': weekday_label(day) if days <= 7 else f'{day.day}', 'value': _money(value)}
            for day, value in series
        ],
    }


def sales_history(backend: BackendClient, *, limit: int | None = None) -> list[dict]:
    """Recent sales with their shop names and line items, newest first."""
    sales = backend.select(Select('sales').order('created_at', desc=True).limit(limit or settings.history_limit))
    if not sales:
        return []
    lines = backend.select(Select('sale_items').where(in_('sale_id', [sale['id'] for sale in sales])))
    names = item_names(backend, (line['item_id'] for line in lines))
    shop_ids = list(dict.fromkeys(sale['outlet_id'] for sale in sales if sale.get('outlet_id') is not None))
    shops = {}
    if shop_ids:
        shops = {row['id']: row.get('name') for row in backend.select(Select('shops', 'id, name').where(in_('id', shop_ids)))}

    lines_by_sale: dict[Any, list[dict]] = {}
    for line in lines:
        lines_by_sale.setdefault(line['sale_id'], []).append(dict(line, item_name=names.get(line['item_id'], 'Unknown Item')))
    return [
        dict(
            sale,
            shop_name=shops.get(sale.get('outlet_id'), 'Unknown Shop'),
            date_label=local_date_label(sale.get('sale_date') or sale.get('created_at'), settings.display_timezone),
            items=lines_by_sale.get(sale['id'], []),
        )
        for sale in sales
    ]


def _alerts(low_stock: list[dict], revenue: Decimal) -> list[dict]:
    alerts = [
        {'level': 'warning', 'title': f"Low stock: {item['name']}", 'detail': f"{item['qty']} left (minimum {item['minimum_level']})"}
        for item in low_stock[:LOW_STOCK_ALERT_LIMIT]
    ]
    if revenue > settings.high_revenue_alert_threshold:
        alerts.append({'level': 'info', 'title': 'High Revenue Volume Detected', 'detail': f'Revenue {_money(revenue):,.2f}'})
    if not alerts:
        alerts.append({'level': 'ok', 'title': 'System operating normally', 'detail': ''})
    return alerts


def admin_dashboard(backend: BackendClient, *, days: int = 30, now: datetime | None = None) -> dict:
    current = _now(now)
    since = current - timedelta(days=days)
    sales = backend.select(
        Select('sales', 'id, outlet_id, total_amount, created_at').where(gte('created_at', since.isoformat()))
    )
    revenue = sum((to_number(row.get('total_amount')) for row in sales), Decimal('0'))

    by_weekday = sum_by(
        [row for row in sales if row.get('created_at')],
        key=lambda row: weekday_label(to_local_date(row.get('created_at'), settings.display_timezone)),
        value=lambda row: row.get('total_amount'),
    )
    by_shop = sum_by(sales, key=lambda row: row.get('outlet_id'), value=lambda row: row.get('total_amount'))
    top_ids = [shop_id for shop_id, _ in sorted(by_shop.items(), key=lambda entry: entry[1], reverse=True)][:TOP_SHOP_LIMIT]
    shop_names = {}
    if top_ids:
        shop_names = {
            row['id']: row.get('name')
            for row in backend.select(Select('shops', 'id, name').where(in_('id', [i for i in top_ids if i is not None])))
        }

    low_stock = [item for item in central_inventory(backend) if item['low_stock']]
    return {
        'days': days,
        'total_revenue': _money(revenue),
        'sale_count': len(sales),
        'route_count': backend.count(Select('routes')),
        'shop_count': backend.count(Select('shops')),
        'low_stock': low_stock,
        'revenue_by_weekday': [{'label': label, 'value': _money(by_weekday.get(label, Decimal('0')))} for label in WEEKDAY_ABBR],
        'top_shops': [
            {'shop_id': shop_id, 'name': shop_names.get(shop_id, 'Unknown Shop'), 'revenue': _money(by_shop[shop_id])}
            for shop_id in top_ids
        ],
        'alerts': _alerts(low_stock, revenue),
    }


def all_activities(backend: BackendClient, *, user_id: str, shop_id=None, limit: int | None = None) -> list[dict]:
    """Requests, sales and income entries for a salesman, merged newest first."""
    activities: list[dict] = []
    for request in backend.select(Select('requests', 'id, status, shop_id, date, created_at').where(eq('salesman_id', user_id))):
        activities.append(
            {
                'kind': 'request',
                'id': request['id'],
                'timestamp': request.get('created_at') or request.get('date'),
                'title': 'Stock request',
                'detail': request.get('status'),
            }
        )
    if shop_id is not None:
        for sale in backend.select(Select('sales', 'id, total_amount, customer_name, created_at').where(eq('outlet_id', shop_id))):
            activities.append(
                {
                    'kind': 'sale',
                    'id': sale['id'],
                    'timestamp': sale.get('created_at'),
                    'title': sale.get('customer_name') or WALK_IN_CUSTOMER,
                    'detail': _money(to_number(sale.get('total_amount'))),
                }
            )
        for income in backend.select(Select('daily_income', 'id, date, total_sales, notes, created_at').where(eq('shop_id', shop_id))):
            activities.append(
                {
                    'kind': 'income',
                    'id': income['id'],
                    'timestamp': income.get('created_at') or income.get('date'),
                    'title': 'Daily income',
                    'detail': _money(to_number(income.get('total_sales'))),
                }
            )

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    activities.sort(key=lambda entry: parse_timestamp(entry['timestamp']) or epoch, reverse=True)
    for entry in activities:
        entry['date_label'] = local_date_label(entry['timestamp'], settings.display_timezone)
    return activities[: limit or settings.history_limit]
