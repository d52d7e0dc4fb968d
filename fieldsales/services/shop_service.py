from __future__ import annotations

import logging

from fieldsales.services.backend_client import (
    BackendClient,
    Select,
    eq,
    ilike,
    in_,
    select_one_or_none,
)
from fieldsales.services.profile_service import get_profile

logger = logging.getLogger(__name__)

REP_LIKE_ROLES = ('rep', 'agent', 'manager', 'owner')


def rep_route_ids(backend: BackendClient, rep_id: str) -> list:
    rows = backend.select(Select('routes', 'id').where(eq('rep_id', rep_id)))
    return [row['id'] for row in rows]


def shops_for_rep(backend: BackendClient, *, rep_id: str, search: str | None = None) -> list[dict]:
    """Shops assigned to the rep directly or through one of the rep's routes."""
    route_ids = rep_route_ids(backend, rep_id)
    query = Select('shops', 'id, name, address, route_id, rep_id').order('name')
    if route_ids:
        query = query.where_any(eq('rep_id', rep_id), in_('route_id', route_ids))
    else:
        query = query.where(eq('rep_id', rep_id))
    shops = [
        {
            'id': row['id'],
            'name': row.get('name') or 'Unknown Shop',
            'address': row.get('address') or 'No address',
            'route_id': row.get('route_id'),
        }
        for row in backend.select(query)
    ]
    needle = (search or '').strip().lower()
    if needle:
        shops = [shop for shop in shops if needle in shop['name'].lower()]
    return shops


def get_shop(backend: BackendClient, shop_id) -> dict | None:
    return select_one_or_none(backend, Select('shops').where(eq('id', shop_id)))


def shop_name(backend: BackendClient, shop_id) -> str:
    shop = get_shop(backend, shop_id)
    return (shop or {}).get('name') or 'Unknown Shop'


def resolve_user_shop(backend: BackendClient, *, user_id: str, shop_id: int | None = None) -> dict:
    """The user's own shop, or the first shop when the user has none assigned."""
    if shop_id is None:
        profile = get_profile(backend, user_id)
        shop_id = (profile or {}).get('shop_id')
    if shop_id is not None:
        shop = get_shop(backend, shop_id)
        if shop:
            return shop
    fallback = select_one_or_none(backend, Select('shops', 'id, name').order('id'))
    if not fallback:
        raise ValueError('No shops available in the system')
    logger.info('User %s has no shop; using fallback shop %s', user_id, fallback.get('name'))
    return fallback


def _contact_rank(role: str | None) -> int:
    normalized = (role or '').lower()
    if 'rep' in normalized or 'agent' in normalized:
        return 1
    if 'owner' in normalized:
        return 2
    return 3


def assigned_reps(backend: BackendClient, *, user_id: str) -> dict:
    profile = get_profile(backend, user_id)
    shop_id = (profile or {}).get('shop_id')
    if not shop_id:
        raise ValueError('Could not find shop information')

    shop = get_shop(backend, shop_id) or {}
    candidate_ids: list = []

    def _add(candidate) -> None:
        if candidate and candidate not in candidate_ids:
            candidate_ids.append(candidate)

    _add(shop.get('owner_id'))
    _add(shop.get('rep_id'))
    if shop.get('route_id'):
        route = select_one_or_none(backend, Select('routes', 'rep_id').where(eq('id', shop['route_id'])))
        _add((route or {}).get('rep_id'))
    _add((profile or {}).get('created_by'))
    _add((profile or {}).get('parent_id'))

    found = backend.select(Select('users').where(in_('id', candidate_ids))) if candidate_ids else []
    linked = backend.select(
        Select('users')
        .where(eq('shop_id', shop_id))
        .where_any(*(ilike('role', f'%{role}%') for role in REP_LIKE_ROLES))
    )

    unique: dict = {}
    for user in found + linked:
        if user['id'] == user_id:
            continue
        unique.setdefault(user['id'], user)

    contacts = sorted(unique.values(), key=lambda user: _contact_rank(user.get('role')))
    return {
        'shop_name': shop.get('name') or 'My Shop',
        'contacts': [
            {
                'id': user['id'],
                'name': user.get('name') or user.get('email') or 'Unknown',
                'email': user.get('email'),
                'phone': user.get('phone'),
                'role': user.get('role'),
            }
            for user in contacts
        ],
    }
