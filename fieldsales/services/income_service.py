from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from fieldsales.config import settings
from fieldsales.services.backend_client import BackendClient, Select, eq
from fieldsales.services.grouping_utils import get_zone, local_date_label, parse_amount, to_number
from fieldsales.services.shop_service import resolve_user_shop

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = ('Fuel', 'Food', 'Transport', 'Accommodation', 'Maintenance', 'Other')
OVERVIEW_INCOME_LIMIT = 5


class IncomeMismatchWarning(ValueError):
    """Cash and credit do not add up to the total; resubmit with confirm to keep it."""

    def __init__(self, *, cash: Decimal, credit: Decimal, total: Decimal) -> None:
        self.cash = cash
        self.credit = credit
        self.total = total
        super().__init__(f'Cash ({cash}) + Credit ({credit}) should equal Total Sales ({total})')


@dataclass(frozen=True)
class IncomeEntry:
    shop_id: int
    day: date
    total_sales: Decimal
    cash_sales: Decimal
    credit_sales: Decimal
    notes: str | None = None


def _parse_amount(raw, label: str) -> Decimal:
    amount = parse_amount(raw, f'{label} must be a number')
    if amount < 0:
        raise ValueError(f'{label} cannot be negative')
    return amount


def today_local(now: datetime | None = None) -> date:
    current = now or datetime.now(tz=timezone.utc)
    return current.astimezone(get_zone(settings.display_timezone)).date()


def validate_income(entry: IncomeEntry, *, confirm: bool = False) -> None:
    if entry.total_sales <= 0:
        raise ValueError('Total sales must be greater than 0')
    if entry.cash_sales + entry.credit_sales != entry.total_sales and not confirm:
        raise IncomeMismatchWarning(cash=entry.cash_sales, credit=entry.credit_sales, total=entry.total_sales)


def submit_daily_income(
    backend: BackendClient,
    *,
    shop_id,
    day: date | None = None,
    total_sales,
    cash_sales=0,
    credit_sales=0,
    notes: str | None = None,
    confirm: bool = False,
) -> dict:
    if shop_id is None:
        raise ValueError('Shop is required')
    entry = IncomeEntry(
        shop_id=shop_id,
        day=day or today_local(),
        total_sales=_parse_amount(total_sales, 'Total sales'),
        cash_sales=_parse_amount(cash_sales, 'Cash sales'),
        credit_sales=_parse_amount(credit_sales, 'Credit sales'),
        notes=(notes or '').strip() or None,
    )
    validate_income(entry, confirm=confirm)
    created = backend.insert(
        'daily_income',
        [
            {
                'shop_id': entry.shop_id,
                'date': entry.day.isoformat(),
                'total_sales': float(entry.total_sales),
                'cash_sales': float(entry.cash_sales),
                'credit_sales': float(entry.credit_sales),
                'notes': entry.notes,
            }
        ],
    )
    logger.info('Daily income for shop %s on %s recorded', entry.shop_id, entry.day)
    return created[0] if created else {}


def income_history(backend: BackendClient, *, shop_id) -> dict:
    rows = backend.select(Select('daily_income').where(eq('shop_id', shop_id)).order('date', desc=True).order('created_at', desc=True))
    for row in rows:
        row['date_label'] = local_date_label(row.get('date'), None)
    return {
        'records': rows,
        'total': float(sum((to_number(row.get('total_sales')) for row in rows), Decimal('0'))),
    }


def all_income(backend: BackendClient) -> list[dict]:
    rows = backend.select(Select('daily_income').order('date', desc=True))
    shops = {row['id']: row.get('name') for row in backend.select(Select('shops', 'id, name'))}
    for row in rows:
        row['shop_name'] = shops.get(row.get('shop_id'), 'Unknown Shop')
        row['date_label'] = local_date_label(row.get('date'), None)
    return rows


def add_expense(backend: BackendClient, *, salesman_id: str, amount, category: str, description: str | None = None) -> dict:
    value = parse_amount(amount, 'Please enter a valid amount')
    if value <= 0:
        raise ValueError('Please enter a valid amount')
    category = (category or '').strip()
    if not category:
        raise ValueError('Please select a category')
    created = backend.insert(
        'expenses',
        [
            {
                'salesman_id': salesman_id,
                'amount': float(value),
                'category': category,
                'description': (description or '').strip() or None,
            }
        ],
    )
    return created[0] if created else {}


def list_expenses(backend: BackendClient, *, salesman_id: str) -> dict:
    rows = backend.select(Select('expenses').where(eq('salesman_id', salesman_id)).order('created_at', desc=True))
    for row in rows:
        row['date_label'] = local_date_label(row.get('created_at'), settings.display_timezone)
    return {
        'expenses': rows,
        'total': float(sum((to_number(row.get('amount')) for row in rows), Decimal('0'))),
    }


def shop_owner_overview(backend: BackendClient, *, user_id: str, shop_id=None) -> dict:
    shop = resolve_user_shop(backend, user_id=user_id, shop_id=shop_id)
    history = income_history(backend, shop_id=shop['id'])
    return {
        'shop': shop,
        'recent_income': history['records'][:OVERVIEW_INCOME_LIMIT],
        'total_income': history['total'],
    }
