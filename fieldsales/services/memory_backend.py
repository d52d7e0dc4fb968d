from __future__ import annotations

import copy
import re
import secrets
import threading
from datetime import datetime, timezone
from typing import Any, Sequence

from fieldsales.services.backend_client import (
    AuthSession,
    AuthUser,
    BackendError,
    Filter,
    InvalidCredentialsError,
    Select,
)

ADD_TYPES = {'OUT', 'RETURN_IN'}
SUBTRACT_TYPES = {'SALE', 'RETURN', 'TRANSFER_OUT', 'RETURN_TO_HQ'}


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _like_to_regex(pattern: str) -> re.Pattern:
    parts = []
    for char in pattern:
        if char in '%*':
            parts.append('.*')
        elif char == '_':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile('^' + ''.join(parts) + '$', re.IGNORECASE | re.DOTALL)


def _same(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is right
    if isinstance(left, (int, float)) and not isinstance(right, (int, float)):
        return str(left) == str(right)
    if isinstance(right, (int, float)) and not isinstance(left, (int, float)):
        return str(left) == str(right)
    return left == right


def _matches(row: dict, flt: Filter) -> bool:
    value = row.get(flt.column)
    if flt.op in {'eq', 'is'}:
        return _same(value, flt.value)
    if flt.op == 'neq':
        return not _same(value, flt.value)
    if flt.op == 'in':
        return any(_same(value, candidate) for candidate in flt.value)
    if flt.op == 'ilike':
        return value is not None and bool(_like_to_regex(str(flt.value)).match(str(value)))
    if value is None:
        return False
    target = flt.value
    if isinstance(value, (int, float)) and isinstance(target, str):
        target = float(target)
    elif isinstance(value, str) and not isinstance(target, str):
        target = str(target)
    if flt.op == 'gt':
        return value > target
    if flt.op == 'gte':
        return value >= target
    if flt.op == 'lt':
        return value < target
    return value <= target


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (1, '')
    if isinstance(value, (int, float)):
        return (0, (0, value))
    return (0, (1, str(value)))


class MemoryBackend:
    """In-process tables with the same contract as the hosted backend."""

    def __init__(self, *, seed: bool = True) -> None:
        self._lock = threading.RLock()
        self.tables: dict[str, list[dict]] = {}
        self._next_ids: dict[str, int] = {}
        self._auth_users: dict[str, dict] = {}
        self._tokens: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        if seed:
            self._seed()

    def with_access_token(self, access_token: str | None) -> MemoryBackend:
        return self

    def _table(self, name: str) -> list[dict]:
        return self.tables.setdefault(name, [])

    def _filtered(self, table: str, filters: Sequence[Filter], any_of: Sequence[Filter] = ()) -> list[dict]:
        rows = [row for row in self._table(table) if all(_matches(row, flt) for flt in filters)]
        if any_of:
            rows = [row for row in rows if any(_matches(row, flt) for flt in any_of)]
        return rows

    def select(self, query: Select) -> list[dict]:
        with self._lock:
            self.calls.append(('select', query.table))
            rows = self._filtered(query.table, query.filters, query.any_of)
            for column, desc in reversed(query.order_by):
                rows = sorted(rows, key=lambda row: _sort_key(row.get(column)), reverse=desc)
            if query.limit_to is not None:
                rows = rows[: query.limit_to]
            return copy.deepcopy(rows)

    def count(self, query: Select) -> int:
        with self._lock:
            self.calls.append(('count', query.table))
            return len(self._filtered(query.table, query.filters, query.any_of))

    def _assign_id(self, table: str, row: dict) -> None:
        if row.get('id') is not None:
            if isinstance(row['id'], int):
                self._next_ids[table] = max(self._next_ids.get(table, 1), row['id'] + 1)
            return
        next_id = self._next_ids.get(table, 1)
        row['id'] = next_id
        self._next_ids[table] = next_id + 1

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        with self._lock:
            self.calls.append(('insert', table))
            created = []
            for raw in rows:
                row = copy.deepcopy(raw)
                self._assign_id(table, row)
                row.setdefault('created_at', _now_iso())
                self._table(table).append(row)
                created.append(copy.deepcopy(row))
            return created

    def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]:
        if not filters:
            raise ValueError('Refusing to update without filters')
        with self._lock:
            self.calls.append(('update', table))
            updated = []
            for row in self._filtered(table, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
            return updated

    def upsert(self, table: str, row: dict, *, on_conflict: str) -> list[dict]:
        with self._lock:
            self.calls.append(('upsert', table))
            keys = [key.strip() for key in on_conflict.split(',') if key.strip()]
            existing = self._filtered(table, [Filter(key, 'eq', row.get(key)) for key in keys])
            if existing:
                existing[0].update(copy.deepcopy(row))
                return [copy.deepcopy(existing[0])]
            return self.insert(table, [row])

    def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError('Refusing to delete without filters')
        with self._lock:
            self.calls.append(('delete', table))
            doomed = {id(row) for row in self._filtered(table, filters)}
            self.tables[table] = [row for row in self._table(table) if id(row) not in doomed]

    # Stored procedures. The hosted backend owns the real implementations.

    def rpc(self, name: str, params: dict) -> Any:
        handler = getattr(self, f'_rpc_{name}', None)
        if handler is None:
            raise BackendError(f'Could not find the function public.{name}', code='PGRST202', status=404)
        with self._lock:
            self.calls.append(('rpc', name))
            return handler(**params)

    def _outlet_stock_row(self, item_id: Any, outlet_id: Any) -> dict:
        rows = self._filtered('stock', [Filter('item_id', 'eq', item_id), Filter('outlet_id', 'eq', outlet_id)])
        if rows:
            return rows[0]
        row = {'item_id': item_id, 'outlet_id': outlet_id, 'qty': 0}
        self._assign_id('stock', row)
        self._table('stock').append(row)
        return row

    def _rep_balance(self, rep_id: Any, item_id: Any) -> int:
        balance = 0
        for row in self._filtered('stock_transactions', [Filter('rep_id', 'eq', rep_id), Filter('item_id', 'eq', item_id)]):
            if row['type'] in ADD_TYPES:
                balance += row['qty']
            elif row['type'] in SUBTRACT_TYPES:
                balance -= row['qty']
        return balance

    def _ledger(self, **values: Any) -> None:
        values.setdefault('created_at', _now_iso())
        self.insert('stock_transactions', [values])

    def _rpc_transfer_stock(
        self,
        p_product_id,
        p_from_outlet_id,
        p_to_outlet_id,
        p_quantity,
        p_notes=None,
        p_user_id=None,
    ) -> dict:
        if p_quantity <= 0:
            return {'success': False, 'message': 'Quantity must be positive'}
        source = self._outlet_stock_row(p_product_id, p_from_outlet_id)
        if source['qty'] < p_quantity:
            return {'success': False, 'message': f"Insufficient stock. Available: {source['qty']}"}
        target = self._outlet_stock_row(p_product_id, p_to_outlet_id)
        source['qty'] -= p_quantity
        target['qty'] += p_quantity
        return {'success': True, 'message': p_notes or 'Transferred'}

    def _rpc_process_customer_return(self, p_product_id, p_outlet_id, p_quantity, p_reason=None, p_user_id=None) -> dict:
        if p_quantity <= 0:
            return {'success': False, 'message': 'Quantity must be positive'}
        row = self._outlet_stock_row(p_product_id, p_outlet_id)
        row['qty'] += p_quantity
        return {'success': True, 'message': p_reason or 'Customer Return'}

    def _rpc_return_rep_to_storekeeper(self, p_rep_id, p_product_id, p_quantity, p_notes=None) -> dict:
        available = self._rep_balance(p_rep_id, p_product_id)
        if p_quantity <= 0 or p_quantity > available:
            raise BackendError(f'Insufficient rep stock. Available: {available}', code='P0001', status=400)
        self._ledger(item_id=p_product_id, rep_id=p_rep_id, qty=p_quantity, type='RETURN_TO_HQ', remarks=p_notes)
        central = self._outlet_stock_row(p_product_id, None)
        central['qty'] += p_quantity
        return {'success': True}

    def _rpc_transfer_salesman_to_rep(self, p_salesman_id, p_rep_id, p_product_id, p_quantity, p_notes=None) -> dict:
        users = self._filtered('users', [Filter('id', 'eq', p_salesman_id)])
        shop_id = users[0].get('shop_id') if users else None
        if shop_id is None:
            raise BackendError('Salesman has no shop', code='P0001', status=400)
        row = self._outlet_stock_row(p_product_id, shop_id)
        if p_quantity <= 0 or row['qty'] < p_quantity:
            return {'success': False, 'message': f"Insufficient stock. Available: {row['qty']}"}
        row['qty'] -= p_quantity
        self._ledger(item_id=p_product_id, rep_id=p_rep_id, qty=p_quantity, type='RETURN_IN', remarks=p_notes)
        return {'success': True}

    # Auth

    def add_auth_user(self, *, user_id: str, email: str, password: str) -> None:
        self._auth_users[email.lower()] = {'id': user_id, 'email': email, 'password': password}

    def sign_in(self, *, email: str, password: str) -> AuthSession:
        self.calls.append(('auth', 'sign_in'))
        account = self._auth_users.get(email.strip().lower())
        if not account or not secrets.compare_digest(account['password'], password):
            raise InvalidCredentialsError('Invalid login credentials', code='invalid_grant', status=400)
        token = secrets.token_urlsafe(24)
        self._tokens[token] = account['email'].lower()
        return AuthSession(access_token=token, user=AuthUser(id=account['id'], email=account['email']))

    def sign_out(self, access_token: str) -> None:
        self.calls.append(('auth', 'sign_out'))
        self._tokens.pop(access_token, None)

    def get_user(self, access_token: str) -> AuthUser | None:
        email = self._tokens.get(access_token)
        if not email:
            return None
        account = self._auth_users[email]
        return AuthUser(id=account['id'], email=account['email'])

    def _seed(self) -> None:
        users = [
            ('u-admin', 'admin@fieldsales.local', 'Ada Admin', 'admin', None),
            ('u-salesman', 'salesman@fieldsales.local', 'Sam Salesman', 'salesman', 1),
            ('u-owner', 'owner@fieldsales.local', 'Olga Owner', 'shop_owner', 2),
            ('u-rep', 'rep@fieldsales.local', 'Ravi Rep', 'rep', None),
            ('u-keeper', 'keeper@fieldsales.local', 'Kim Keeper', 'storekeeper', None),
        ]
        for user_id, email, name, role, shop_id in users:
            self.insert('users', [{'id': user_id, 'email': email, 'name': name, 'role': role, 'shop_id': shop_id}])
            self.add_auth_user(user_id=user_id, email=email, password='password')

        self.insert('routes', [{'id': 1, 'name': 'North Route', 'rep_id': 'u-rep'}])
        self.insert(
            'shops',
            [
                {'id': 1, 'name': 'Central Mart', 'address': '12 Main St', 'owner_id': 'u-owner', 'route_id': 1, 'rep_id': None},
                {'id': 2, 'name': 'Lake View Stores', 'address': '4 Lake Rd', 'owner_id': 'u-owner', 'route_id': None, 'rep_id': 'u-rep'},
                {'id': 3, 'name': 'Hill Top Traders', 'address': '88 Hill Ave', 'owner_id': None, 'route_id': None, 'rep_id': None},
            ],
        )
        self.insert(
            'items',
            [
                {'id': 1, 'name': 'Basmati Rice 5kg', 'unit_of_measure': 'bag', 'price': 2450, 'minimum_level': 10},
                {'id': 2, 'name': 'Coconut Oil 1L', 'unit_of_measure': 'bottle', 'price': 890, 'minimum_level': 5},
                {'id': 3, 'name': 'Dhal 1kg', 'unit_of_measure': 'pack', 'price': 420, 'minimum_level': 5},
                {'id': 4, 'name': 'Tea Leaves 400g', 'unit_of_measure': 'pack', 'price': 760, 'minimum_level': 5},
                {'id': 5, 'name': 'Sugar 1kg', 'unit_of_measure': 'pack', 'price': 310, 'minimum_level': 8},
            ],
        )
        self.insert(
            'stock',
            [
                {'item_id': 1, 'outlet_id': None, 'qty': 120},
                {'item_id': 2, 'outlet_id': None, 'qty': 4},
                {'item_id': 3, 'outlet_id': None, 'qty': 60},
                {'item_id': 4, 'outlet_id': None, 'qty': 35},
                {'item_id': 1, 'outlet_id': 1, 'qty': 14},
                {'item_id': 2, 'outlet_id': 1, 'qty': 9},
                {'item_id': 3, 'outlet_id': 2, 'qty': 20},
            ],
        )
        self.insert(
            'stock_transactions',
            [
                {'item_id': 1, 'rep_id': 'u-rep', 'qty': 30, 'type': 'OUT', 'remarks': 'Issued to Ravi Rep'},
                {'item_id': 3, 'rep_id': 'u-rep', 'qty': 15, 'type': 'OUT', 'remarks': 'Issued to Ravi Rep'},
            ],
        )
        request = self.insert('requests', [{'shop_id': 1, 'salesman_id': 'u-salesman', 'status': 'pending', 'date': _now_iso()}])[0]
        self.insert(
            'request_items',
            [
                {'request_id': request['id'], 'item_id': 1, 'qty': 10, 'delivered_qty': 0},
                {'request_id': request['id'], 'item_id': 3, 'qty': 6, 'delivered_qty': 0},
            ],
        )
