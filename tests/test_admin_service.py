from __future__ import annotations

import unittest

from fieldsales.auth import UnknownRoleError
from fieldsales.services.admin_service import (
    create_item,
    create_route,
    create_shop,
    delete_route,
    get_user,
    list_routes,
    list_shops,
    stock_overview,
    stock_value,
    update_item,
    update_route,
    update_user,
)
from fieldsales.services.backend_client import RecordNotFoundError, Select, eq
from fieldsales.services.memory_backend import MemoryBackend


class ItemAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_create_item_normalizes_fields(self) -> None:
        item = create_item(self.backend, name='  Flour 1kg ', unit_of_measure='', price='199.5', minimum_level='4')
        self.assertEqual(item['name'], 'Flour 1kg')
        self.assertIsNone(item['unit_of_measure'])
        self.assertEqual(item['price'], 199.5)
        self.assertEqual(item['minimum_level'], 4)

    def test_item_validation(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Item name is required'):
            create_item(self.backend, name=' ')
        with self.assertRaisesRegex(ValueError, 'Price cannot be negative'):
            create_item(self.backend, name='Salt', price=-1)

    def test_malformed_price_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Invalid price'):
            create_item(self.backend, name='Salt', price='12,50')
        with self.assertRaisesRegex(ValueError, 'Invalid price'):
            update_item(self.backend, item_id=1, name='Rice 5kg', price='nan')
        self.assertEqual(create_item(self.backend, name='Salt', price=' ')['price'], 0.0)

    def test_update_missing_item(self) -> None:
        with self.assertRaises(LookupError):
            update_item(self.backend, item_id=404, name='Nothing')


class ShopAndRouteAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def _route_of(self, shop_id):
        return self.backend.select(Select('shops').where(eq('id', shop_id)))[0]['route_id']

    def test_list_shops_resolves_names(self) -> None:
        shops = {shop['id']: shop for shop in list_shops(self.backend)}
        self.assertEqual(shops[1]['route_name'], 'North Route')
        self.assertEqual(shops[1]['owner_name'], 'Olga Owner')
        self.assertEqual(shops[2]['rep_name'], 'Ravi Rep')
        self.assertIsNone(shops[3]['owner_name'])

    def test_create_shop_blank_ids_become_null(self) -> None:
        shop = create_shop(self.backend, name='Beach Kiosk', owner_id='', route_id='1', rep_id=' ')
        self.assertIsNone(shop['owner_id'])
        self.assertEqual(shop['route_id'], 1)
        self.assertIsNone(shop['rep_id'])

    def test_route_assignment_moves_shops(self) -> None:
        route = create_route(self.backend, name='South Route', rep_id='u-rep', shop_ids=['2', '3'])
        self.assertEqual(self._route_of(2), route['id'])
        self.assertEqual(self._route_of(3), route['id'])
        self.assertEqual(self._route_of(1), 1)

        update_route(self.backend, route_id=route['id'], name='South Route', rep_id='u-rep', shop_ids=['3'])
        self.assertIsNone(self._route_of(2))
        self.assertEqual(self._route_of(3), route['id'])

        listing = {row['id']: row for row in list_routes(self.backend)}
        self.assertEqual([shop['id'] for shop in listing[route['id']]['shops']], [3])
        self.assertEqual(listing[route['id']]['rep_name'], 'Ravi Rep')

    def test_delete_route_unassigns_its_shops(self) -> None:
        delete_route(self.backend, route_id=1)
        self.assertIsNone(self._route_of(1))
        self.assertEqual(self.backend.select(Select('routes')), [])

    def test_route_needs_a_name(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Route name is required'):
            create_route(self.backend, name='')


class UserAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_update_user_stores_canonical_role(self) -> None:
        updated = update_user(self.backend, user_id='u-rep', name='Ravi R.', role='Representative', shop_id='')
        self.assertEqual(updated['role'], 'rep')
        self.assertEqual(get_user(self.backend, 'u-rep')['name'], 'Ravi R.')

    def test_update_user_rejects_unknown_role(self) -> None:
        with self.assertRaises(UnknownRoleError):
            update_user(self.backend, user_id='u-rep', name='Ravi', role='manager')
        self.assertEqual(get_user(self.backend, 'u-rep')['role'], 'rep')

    def test_missing_user(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            get_user(self.backend, 'u-nobody')


class StockOverviewTests(unittest.TestCase):
    def test_central_rows_are_labelled(self) -> None:
        rows = stock_overview(MemoryBackend())
        locations = {(row['item_id'], row['location']) for row in rows}
        self.assertIn((1, 'Central Store'), locations)
        self.assertIn((1, 'Central Mart'), locations)
        rice_central = next(row for row in rows if row['item_id'] == 1 and row['location'] == 'Central Store')
        self.assertEqual(rice_central['value'], 120 * 2450.0)
        self.assertEqual(stock_value([{'value': 1.25}, {'value': 2.5}]), 3.75)


if __name__ == '__main__':
    unittest.main()
