from __future__ import annotations

import io
import json
import unittest
from unittest.mock import patch
from urllib.error import HTTPError, URLError

from fieldsales.config import settings
from fieldsales.services.backend_client import (
    BackendError,
    BackendUnavailableError,
    InvalidCredentialsError,
    Select,
    eq,
    gte,
    in_,
)
from fieldsales.services.supabase_backend import SupabaseBackend, encode_query_params


class _FakeResponse:
    def __init__(self, payload=None, headers=None) -> None:
        self._body = json.dumps(payload).encode('utf-8') if payload is not None else b''
        self.headers = headers or {}

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def _http_error(url: str, status: int, payload: dict) -> HTTPError:
    return HTTPError(url, status, 'error', {}, io.BytesIO(json.dumps(payload).encode('utf-8')))


class QueryEncodingTests(unittest.TestCase):
    def test_filters_order_and_limit(self) -> None:
        query = (
            Select('stock', 'item_id, qty')
            .where(eq('outlet_id', None), gte('qty', 3), in_('item_id', [1, 2]))
            .order('created_at', desc=True)
            .order('id')
            .limit(5)
        )
        self.assertEqual(
            encode_query_params(query),
            [
                ('select', 'item_id, qty'),
                ('outlet_id', 'is.null'),
                ('qty', 'gte.3'),
                ('item_id', 'in.(1,2)'),
                ('order', 'created_at.desc,id.asc'),
                ('limit', '5'),
            ],
        )

    def test_any_of_becomes_or_group(self) -> None:
        query = Select('shops').where_any(eq('rep_id', 'u-rep'), in_('route_id', [1, 4]))
        self.assertIn(('or', '(rep_id.eq.u-rep,route_id.in.(1,4))'), encode_query_params(query))

    def test_list_values_with_commas_are_quoted(self) -> None:
        params = encode_query_params(Select('items').where(in_('name', ['Salt, fine', 'Rice'])))
        self.assertEqual(params[1], ('name', 'in.("Salt, fine",Rice)'))


class SupabaseTransportTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch.object(settings, 'backend_anon_key', 'anon-key')
        patcher.start()
        self.addCleanup(patcher.stop)
        self.backend = SupabaseBackend()

    def test_missing_anon_key_is_a_config_error(self) -> None:
        with patch.object(settings, 'backend_anon_key', None):
            with self.assertRaisesRegex(ValueError, 'BACKEND_ANON_KEY'):
                SupabaseBackend()

    def test_select_sends_user_token(self) -> None:
        scoped = self.backend.with_access_token('user-token')
        with patch('fieldsales.services.supabase_backend.urlopen', return_value=_FakeResponse([{'id': 1}])) as mocked:
            rows = scoped.select(Select('items').where(eq('id', 1)))
        self.assertEqual(rows, [{'id': 1}])
        request = mocked.call_args.args[0]
        self.assertIn('/rest/v1/items?select=*&id=eq.1', request.full_url)
        self.assertEqual(request.get_header('Authorization'), 'Bearer user-token')
        self.assertEqual(request.get_header('Apikey'), 'anon-key')

    def test_count_reads_content_range(self) -> None:
        response = _FakeResponse(headers={'Content-Range': '0-9/42'})
        with patch('fieldsales.services.supabase_backend.urlopen', return_value=response):
            self.assertEqual(self.backend.count(Select('shops')), 42)

    def test_network_failure_is_retryable(self) -> None:
        with patch('fieldsales.services.supabase_backend.urlopen', side_effect=URLError('connection refused')):
            with self.assertRaises(BackendUnavailableError):
                self.backend.select(Select('items'))

    def test_bad_password_maps_to_invalid_credentials(self) -> None:
        error = _http_error('http://x/auth/v1/token', 400, {'error': 'invalid_grant', 'error_description': 'Invalid login credentials'})
        with patch('fieldsales.services.supabase_backend.urlopen', side_effect=error):
            with self.assertRaises(InvalidCredentialsError) as ctx:
                self.backend.sign_in(email='rep@fieldsales.local', password='nope')
        self.assertEqual(ctx.exception.message, 'Invalid login credentials')
        self.assertEqual(ctx.exception.code, 'invalid_grant')

    def test_postgrest_error_keeps_code_and_status(self) -> None:
        error = _http_error('http://x/rest/v1/items', 403, {'code': '42501', 'message': 'permission denied for table items'})
        with patch('fieldsales.services.supabase_backend.urlopen', side_effect=error):
            with self.assertRaises(BackendError) as ctx:
                self.backend.insert('items', [{'name': 'Salt'}])
        self.assertNotIsInstance(ctx.exception, BackendUnavailableError)
        self.assertEqual(ctx.exception.code, '42501')
        self.assertEqual(ctx.exception.status, 403)

    def test_gateway_errors_are_retryable(self) -> None:
        error = _http_error('http://x/rest/v1/items', 503, {'message': 'upstream unavailable'})
        with patch('fieldsales.services.supabase_backend.urlopen', side_effect=error):
            with self.assertRaises(BackendUnavailableError):
                self.backend.select(Select('items'))

    def test_get_user_returns_none_for_expired_token(self) -> None:
        error = _http_error('http://x/auth/v1/user', 401, {'msg': 'JWT expired'})
        with patch('fieldsales.services.supabase_backend.urlopen', side_effect=error):
            self.assertIsNone(self.backend.get_user('expired'))

    def test_update_without_filters_is_refused(self) -> None:
        with self.assertRaises(ValueError):
            self.backend.update('items', {'name': 'x'}, [])


if __name__ == '__main__':
    unittest.main()
