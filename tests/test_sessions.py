from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from fieldsales.auth import Principal, Role
from fieldsales.config import settings
from fieldsales.security.sessions import DemoSessionRegistry, is_demo_token, revoke_session


def _demo_principal(role: Role = Role.REP) -> Principal:
    return Principal(id=f'demo-{role.value}', email=f'{role.value}@test.com', name='Demo', role=role, shop_id=None, is_demo=True)


class DemoSessionRegistryTests(unittest.TestCase):
    def test_sliding_session_round_trip(self) -> None:
        registry = DemoSessionRegistry()
        token = registry.create(_demo_principal())
        self.assertTrue(is_demo_token(token))
        self.assertEqual(registry.get(token).role, Role.REP)
        registry.revoke(token)
        self.assertIsNone(registry.get(token))

    def test_expired_token_is_not_returned(self) -> None:
        registry = DemoSessionRegistry()
        with patch.object(settings, 'session_ttl_minutes', -1):
            token = registry.create(_demo_principal())
        self.assertIsNone(registry.get(token))
        self.assertEqual(len(registry), 0)

    def test_abandoned_sessions_are_purged_on_create(self) -> None:
        registry = DemoSessionRegistry()
        with patch.object(settings, 'session_ttl_minutes', -1):
            for _ in range(100):
                registry.create(_demo_principal())
        self.assertEqual(len(registry), 100)

        live = registry.create(_demo_principal(Role.STOREKEEPER))
        self.assertLessEqual(len(registry), 1)
        self.assertEqual(registry.get(live).role, Role.STOREKEEPER)


class RevokeSessionTests(unittest.TestCase):
    def test_demo_revoke_never_touches_backend(self) -> None:
        with patch('fieldsales.security.sessions.get_backend') as factory:
            revoke_session('demo.unknown', _demo_principal())
            revoke_session(None, None)
        factory.assert_not_called()

    def test_real_session_signs_out(self) -> None:
        backend = MagicMock()
        principal = Principal(id='u-rep', email='rep@fieldsales.local', name='Ravi', role=Role.REP, shop_id=None, access_token='tok')
        revoke_session('tok', principal, backend)
        backend.sign_out.assert_called_once_with('tok')


if __name__ == '__main__':
    unittest.main()
