from __future__ import annotations

import json
import unittest

from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import Select, eq
from fieldsales.services.memory_backend import MemoryBackend
from fieldsales.services.profile_service import display_name, update_profile
from fieldsales.services.shop_service import assigned_reps, resolve_user_shop, shops_for_rep


class ShopLookupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_rep_sees_direct_and_route_shops(self) -> None:
        shops = shops_for_rep(self.backend, rep_id='u-rep')
        self.assertEqual([shop['name'] for shop in shops], ['Central Mart', 'Lake View Stores'])

    def test_rep_search_is_case_insensitive(self) -> None:
        shops = shops_for_rep(self.backend, rep_id='u-rep', search='  LAKE ')
        self.assertEqual([shop['id'] for shop in shops], [2])

    def test_rep_without_routes_uses_direct_assignment(self) -> None:
        self.backend.update('routes', {'rep_id': None}, [eq('id', 1)])
        self.assertEqual([shop['id'] for shop in shops_for_rep(self.backend, rep_id='u-rep')], [2])

    def test_user_without_shop_falls_back_to_first(self) -> None:
        self.assertEqual(resolve_user_shop(self.backend, user_id='u-owner')['id'], 2)
        with self.assertLogs('fieldsales.services.shop_service', level='INFO'):
            self.assertEqual(resolve_user_shop(self.backend, user_id='u-rep')['id'], 1)

    def test_no_shops_at_all(self) -> None:
        with self.assertRaisesRegex(ValueError, 'No shops available'):
            resolve_user_shop(MemoryBackend(seed=False), user_id='anyone')


class AssignedRepsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_contacts_are_ranked_rep_then_owner(self) -> None:
        result = assigned_reps(self.backend, user_id='u-salesman')
        self.assertEqual(result['shop_name'], 'Central Mart')
        self.assertEqual([contact['id'] for contact in result['contacts']], ['u-rep', 'u-owner'])

    def test_caller_is_excluded_and_duplicates_collapse(self) -> None:
        self.backend.update('shops', {'rep_id': 'u-rep'}, [eq('id', 1)])
        self.backend.insert('users', [{'id': 'u-agent', 'name': 'Ann Agent', 'role': 'sales_agent', 'shop_id': 1}])
        contacts = assigned_reps(self.backend, user_id='u-salesman')['contacts']
        ids = [contact['id'] for contact in contacts]
        self.assertEqual(ids.count('u-rep'), 1)
        self.assertIn('u-agent', ids)
        self.assertNotIn('u-salesman', ids)
        self.assertEqual(ids[-1], 'u-owner')

    def test_user_without_shop(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Could not find shop information'):
            assigned_reps(self.backend, user_id='u-rep')


class ProfileTests(unittest.TestCase):
    def test_update_profile_trims_name(self) -> None:
        backend = MemoryBackend()
        updated = update_profile(backend, user_id='u-rep', name='  Ravi Perera ')
        self.assertEqual(updated['name'], 'Ravi Perera')
        self.assertEqual(backend.select(Select('users').where(eq('id', 'u-rep')))[0]['name'], 'Ravi Perera')
        with self.assertRaisesRegex(ValueError, 'Name is required'):
            update_profile(backend, user_id='u-rep', name=' ')

    def test_display_name_falls_back_to_email(self) -> None:
        self.assertEqual(display_name(None, 'kim@fieldsales.local'), 'Kim')
        self.assertEqual(display_name({'name': ' Kim Keeper '}, None), 'Kim Keeper')
        self.assertEqual(display_name(None, None), 'User')


class AuditLogTests(unittest.TestCase):
    def test_audit_record_is_json(self) -> None:
        with self.assertLogs('fieldsales.audit', level='INFO') as captured:
            log_audit(actor_id='u-admin', action='ROUTE_CREATED', ip='10.0.0.1', metadata={'route_id': 7})
        message = captured.records[0].getMessage()
        self.assertTrue(message.startswith('ROUTE_CREATED '))
        payload = json.loads(message.split(' ', 1)[1])
        self.assertEqual(payload, {'action': 'ROUTE_CREATED', 'actor_id': 'u-admin', 'ip': '10.0.0.1', 'meta': {'route_id': 7}})


if __name__ == '__main__':
    unittest.main()
