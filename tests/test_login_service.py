from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from fieldsales.auth import Role, UnknownRoleError, dashboard_for_role, resolve_role
from fieldsales.config import settings
from fieldsales.services.backend_client import BackendError, BackendUnavailableError, InvalidCredentialsError
from fieldsales.services.login_service import authenticate, is_demo_credentials, load_principal, logout
from fieldsales.services.memory_backend import MemoryBackend


class RoleRoutingTests(unittest.TestCase):
    def test_rep_in_any_casing_routes_to_rep_dashboard(self) -> None:
        for raw in ('rep', 'REP', 'Rep', ' rep '):
            self.assertEqual(dashboard_for_role(resolve_role(raw)), '/api/rep/home')

    def test_aliases(self) -> None:
        self.assertIs(resolve_role('Representative'), Role.REP)
        self.assertIs(resolve_role('keeper'), Role.STOREKEEPER)
        self.assertEqual(dashboard_for_role(Role.SHOP_OWNER), dashboard_for_role(Role.SALESMAN))
        self.assertEqual(dashboard_for_role(Role.ADMIN), '/admin/dashboard')

    def test_unknown_role_has_explicit_message(self) -> None:
        with self.assertRaisesRegex(UnknownRoleError, 'Unknown role: manager'):
            resolve_role('manager')
        with self.assertRaisesRegex(UnknownRoleError, 'User role not found'):
            resolve_role(None)


class DemoLoginTests(unittest.TestCase):
    def test_demo_login_never_touches_backend(self) -> None:
        backend = MagicMock()
        result = authenticate(backend, email='rep@test.com', password='demo')
        self.assertEqual(backend.method_calls, [])
        self.assertIs(result.principal.role, Role.REP)
        self.assertTrue(result.principal.is_demo)
        self.assertIsNone(result.principal.access_token)
        self.assertEqual(result.destination, '/api/rep/home')

    def test_demo_role_from_local_part(self) -> None:
        backend = MagicMock()
        self.assertIs(authenticate(backend, email='Keeper@test.com', password='demo').principal.role, Role.STOREKEEPER)
        self.assertIs(authenticate(backend, email='salesman@test.com', password='demo').principal.role, Role.SALESMAN)
        backend.assert_not_called()
        self.assertEqual(backend.method_calls, [])

    def test_unknown_demo_role_lists_demo_accounts(self) -> None:
        backend = MagicMock()
        with self.assertRaises(UnknownRoleError) as ctx:
            authenticate(backend, email='boss@test.com', password='demo')
        self.assertIn('Unknown role: boss', str(ctx.exception))
        self.assertIn('salesman@test.com', str(ctx.exception))
        self.assertEqual(backend.method_calls, [])

    def test_missing_fields_are_rejected(self) -> None:
        with self.assertRaisesRegex(ValueError, 'Please enter both email and password'):
            authenticate(MagicMock(), email='  ', password='demo')
        with self.assertRaisesRegex(ValueError, 'Please enter both email and password'):
            authenticate(MagicMock(), email='rep@test.com', password='')

    def test_demo_mode_can_be_disabled(self) -> None:
        with patch.object(settings, 'demo_mode_enabled', False):
            self.assertFalse(is_demo_credentials('rep@test.com', 'demo'))
            with self.assertRaises(InvalidCredentialsError):
                authenticate(MemoryBackend(), email='rep@test.com', password='demo')

    def test_wrong_demo_password_goes_to_backend(self) -> None:
        self.assertFalse(is_demo_credentials('rep@test.com', 'nope'))


class BackendLoginTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = MemoryBackend()

    def test_backend_login_resolves_profile_role(self) -> None:
        result = authenticate(self.backend, email='rep@fieldsales.local', password='password')
        self.assertEqual(result.principal.id, 'u-rep')
        self.assertEqual(result.principal.name, 'Ravi Rep')
        self.assertIs(result.principal.role, Role.REP)
        self.assertFalse(result.principal.is_demo)
        self.assertTrue(result.principal.access_token)

    def test_bad_password_raises_invalid_credentials(self) -> None:
        with self.assertRaises(InvalidCredentialsError):
            authenticate(self.backend, email='rep@fieldsales.local', password='wrong')

    def test_missing_profile_suggests_demo_mode(self) -> None:
        self.backend.add_auth_user(user_id='u-ghost', email='ghost@fieldsales.local', password='pw')
        with self.assertRaisesRegex(ValueError, 'Could not fetch user information'):
            authenticate(self.backend, email='ghost@fieldsales.local', password='pw')

    def test_profile_lookup_network_failure_propagates(self) -> None:
        with patch.object(self.backend, 'select', side_effect=BackendUnavailableError('timed out')):
            with self.assertRaises(BackendUnavailableError):
                authenticate(self.backend, email='rep@fieldsales.local', password='password')

    def test_load_principal_and_logout(self) -> None:
        result = authenticate(self.backend, email='keeper@fieldsales.local', password='password')
        principal = load_principal(self.backend, result.principal.access_token)
        self.assertIsNotNone(principal)
        self.assertIs(principal.role, Role.STOREKEEPER)

        logout(self.backend, principal)
        self.assertIsNone(load_principal(self.backend, result.principal.access_token))

    def test_logout_skips_demo_principals(self) -> None:
        backend = MagicMock()
        result = authenticate(backend, email='admin@test.com', password='demo')
        logout(backend, result.principal)
        backend.sign_out.assert_not_called()

    def test_logout_failure_is_logged_not_raised(self) -> None:
        backend = MagicMock()
        backend.sign_out.side_effect = BackendError('session missing')
        result = authenticate(self.backend, email='rep@fieldsales.local', password='password')
        with self.assertLogs('fieldsales.services.login_service', level='WARNING'):
            logout(backend, result.principal)


if __name__ == '__main__':
    unittest.main()
