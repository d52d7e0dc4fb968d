from __future__ import annotations

import logging
from decimal import Decimal

from fieldsales.auth import resolve_role
from fieldsales.services.backend_client import BackendClient, Select, eq, in_, select_one
from fieldsales.services.grouping_utils import parse_amount, to_number
from fieldsales.services.stock_service import normalize_id

logger = logging.getLogger(__name__)


def _required(value, label: str) -> str:
    text = str(value or '').strip()
    if not text:
        raise ValueError(f'{label} is required')
    return text


def _optional_id(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return normalize_id(value)


def _first(rows: list[dict], message: str) -> dict:
    if not rows:
        raise LookupError(message)
    return rows[0]


# Items


def list_items(backend: BackendClient) -> list[dict]:
    return backend.select(Select('items').order('name'))


def _item_values(*, name, unit_of_measure, price, minimum_level) -> dict:
    price_value = parse_amount(price, 'Invalid price')
    if price_value < 0:
        raise ValueError('Price cannot be negative')
    values = {
        'name': _required(name, 'Item name'),
        'unit_of_measure': (unit_of_measure or '').strip() or None,
        'price': float(price_value),
    }
    if minimum_level not in (None, ''):
        level = int(minimum_level)
        if level < 0:
            raise ValueError('Minimum level cannot be negative')
        values['minimum_level'] = level
    return values


def create_item(backend: BackendClient, *, name, unit_of_measure=None, price=0, minimum_level=None) -> dict:
    values = _item_values(name=name, unit_of_measure=unit_of_measure, price=price, minimum_level=minimum_level)
    return _first(backend.insert('items', [values]), 'Item was not created')


def update_item(backend: BackendClient, *, item_id, name, unit_of_measure=None, price=0, minimum_level=None) -> dict:
    values = _item_values(name=name, unit_of_measure=unit_of_measure, price=price, minimum_level=minimum_level)
    return _first(backend.update('items', values, [eq('id', item_id)]), 'Item not found')


def delete_item(backend: BackendClient, *, item_id) -> None:
    backend.delete('items', [eq('id', item_id)])


# Shops


def list_shops(backend: BackendClient) -> list[dict]:
    shops = backend.select(Select('shops').order('name'))
    routes = {row['id']: row.get('name') for row in backend.select(Select('routes', 'id, name'))}
    user_ids = [uid for shop in shops for uid in (shop.get('owner_id'), shop.get('rep_id')) if uid]
    users = {}
    if user_ids:
        users = {
            row['id']: row.get('name') or row.get('email')
            for row in backend.select(Select('users', 'id, name, email').where(in_('id', list(dict.fromkeys(user_ids)))))
        }
    for shop in shops:
        shop['route_name'] = routes.get(shop.get('route_id'))
        shop['owner_name'] = users.get(shop.get('owner_id'))
        shop['rep_name'] = users.get(shop.get('rep_id'))
    return shops


def _shop_values(*, name, address, owner_id, route_id, rep_id) -> dict:
    return {
        'name': _required(name, 'Shop name'),
        'address': (address or '').strip() or None,
        'owner_id': _optional_id(owner_id),
        'route_id': _optional_id(route_id),
        'rep_id': _optional_id(rep_id),
    }


def create_shop(backend: BackendClient, *, name, address=None, owner_id=None, route_id=None, rep_id=None) -> dict:
    values = _shop_values(name=name, address=address, owner_id=owner_id, route_id=route_id, rep_id=rep_id)
    return _first(backend.insert('shops', [values]), 'Shop was not created')


def update_shop(backend: BackendClient, *, shop_id, name, address=None, owner_id=None, route_id=None, rep_id=None) -> dict:
    values = _shop_values(name=name, address=address, owner_id=owner_id, route_id=route_id, rep_id=rep_id)
    return _first(backend.update('shops', values, [eq('id', shop_id)]), 'Shop not found')


def delete_shop(backend: BackendClient, *, shop_id) -> None:
    backend.delete('shops', [eq('id', shop_id)])


# Routes


def list_routes(backend: BackendClient) -> list[dict]:
    routes = backend.select(Select('routes').order('name'))
    shops = backend.select(Select('shops', 'id, name, route_id'))
    rep_ids = [route['rep_id'] for route in routes if route.get('rep_id')]
    reps = {}
    if rep_ids:
        reps = {row['id']: row.get('name') or row.get('email') for row in backend.select(Select('users', 'id, name, email').where(in_('id', rep_ids)))}
    for route in routes:
        route['rep_name'] = reps.get(route.get('rep_id'))
        route['shops'] = [shop for shop in shops if shop.get('route_id') == route['id']]
    return routes


def _assign_route_shops(backend: BackendClient, route_id, shop_ids) -> None:
    wanted = [normalize_id(shop_id) for shop_id in shop_ids or []]
    current = [row['id'] for row in backend.select(Select('shops', 'id').where(eq('route_id', route_id)))]
    dropped = [shop_id for shop_id in current if shop_id not in wanted]
    if dropped:
        backend.update('shops', {'route_id': None}, [in_('id', dropped)])
    if wanted:
        backend.update('shops', {'route_id': route_id}, [in_('id', wanted)])


def create_route(backend: BackendClient, *, name, rep_id=None, shop_ids=None) -> dict:
    route = _first(
        backend.insert('routes', [{'name': _required(name, 'Route name'), 'rep_id': _optional_id(rep_id)}]),
        'Route was not created',
    )
    _assign_route_shops(backend, route['id'], shop_ids)
    return route


def update_route(backend: BackendClient, *, route_id, name, rep_id=None, shop_ids=None) -> dict:
    route = _first(
        backend.update('routes', {'name': _required(name, 'Route name'), 'rep_id': _optional_id(rep_id)}, [eq('id', route_id)]),
        'Route not found',
    )
    _assign_route_shops(backend, route_id, shop_ids)
    return route


def delete_route(backend: BackendClient, *, route_id) -> None:
    backend.update('shops', {'route_id': None}, [eq('route_id', route_id)])
    backend.delete('routes', [eq('id', route_id)])


# Users


def list_users(backend: BackendClient) -> list[dict]:
    users = backend.select(Select('users').order('name'))
    shops = {row['id']: row.get('name') for row in backend.select(Select('shops', 'id, name'))}
    for user in users:
        user['shop_name'] = shops.get(user.get('shop_id'))
    return users


def list_users_by_role(backend: BackendClient, role: str) -> list[dict]:
    return backend.select(Select('users', 'id, name, email, role').where(eq('role', role)).order('name'))


def update_user(backend: BackendClient, *, user_id, name, role, shop_id=None) -> dict:
    resolved = resolve_role(role)
    values = {'name': _required(name, 'Name'), 'role': resolved.value, 'shop_id': _optional_id(shop_id)}
    updated = _first(backend.update('users', values, [eq('id', user_id)]), 'User not found')
    logger.info('User %s updated to role %s', user_id, resolved.value)
    return updated


def get_user(backend: BackendClient, user_id) -> dict:
    return select_one(backend, Select('users').where(eq('id', user_id)))


def stock_overview(backend: BackendClient) -> list[dict]:
    """Every stock row with item and outlet names; outlet None is the central store."""
    rows = backend.select(Select('stock').order('item_id'))
    items = {row['id']: row for row in backend.select(Select('items', 'id, name, price, minimum_level'))}
    shops = {row['id']: row.get('name') for row in backend.select(Select('shops', 'id, name'))}
    overview = []
    for row in rows:
        item = items.get(row.get('item_id'), {})
        qty = int(row.get('qty') or 0)
        overview.append(
            {
                'item_id': row.get('item_id'),
                'item_name': item.get('name') or 'Unknown Item',
                'location': shops.get(row.get('outlet_id'), 'Unknown Shop') if row.get('outlet_id') is not None else 'Central Store',
                'qty': qty,
                'value': float(to_number(item.get('price')) * qty),
            }
        )
    return overview


def stock_value(rows: list[dict]) -> float:
    return float(sum((Decimal(str(row['value'])) for row in rows), Decimal('0')))
