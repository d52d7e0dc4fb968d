from __future__ import annotations

import json
import logging
import socket
from typing import Any, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from fieldsales.config import settings
from fieldsales.services.backend_client import (
    AuthSession,
    AuthUser,
    BackendError,
    BackendUnavailableError,
    Filter,
    InvalidCredentialsError,
    Select,
)

logger = logging.getLogger(__name__)

CLIENT_INFO = 'fieldsales-python'


def _format_scalar(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _format_list(values: Sequence[Any]) -> str:
    parts = []
    for value in values:
        text = _format_scalar(value)
        if any(ch in text for ch in ',()"'):
            text = '"' + text.replace('"', '\\"') + '"'
        parts.append(text)
    return '(' + ','.join(parts) + ')'


def encode_filter_value(flt: Filter) -> str:
    if flt.op == 'in':
        return f'in.{_format_list(flt.value)}'
    if flt.value is None and flt.op in {'eq', 'is'}:
        return 'is.null'
    return f'{flt.op}.{_format_scalar(flt.value)}'


def encode_query_params(query: Select) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = [('select', query.columns)]
    for flt in query.filters:
        params.append((flt.column, encode_filter_value(flt)))
    if query.any_of:
        inner = ','.join(f'{flt.column}.{encode_filter_value(flt)}' for flt in query.any_of)
        params.append(('or', f'({inner})'))
    if query.order_by:
        params.append(('order', ','.join(f"{column}.{'desc' if desc else 'asc'}" for column, desc in query.order_by)))
    if query.limit_to is not None:
        params.append(('limit', str(query.limit_to)))
    return params


def _filter_params(filters: Sequence[Filter]) -> list[tuple[str, str]]:
    return [(flt.column, encode_filter_value(flt)) for flt in filters]


class SupabaseBackend:
    """PostgREST + GoTrue client speaking plain JSON over HTTP."""

    def __init__(self, access_token: str | None = None) -> None:
        if not settings.backend_anon_key:
            raise ValueError('BACKEND_ANON_KEY is required when BACKEND_PROVIDER=supabase')
        self.base_url = settings.backend_url_normalized
        self.anon_key = settings.backend_anon_key
        self.access_token = access_token

    def with_access_token(self, access_token: str | None) -> SupabaseBackend:
        return SupabaseBackend(access_token=access_token)

    def _headers(self, extra: dict | None = None, *, token: str | None = None) -> dict[str, str]:
        bearer = token or self.access_token or self.anon_key
        headers = {
            'apikey': self.anon_key,
            'Authorization': f'Bearer {bearer}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'X-Client-Info': CLIENT_INFO,
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        payload: Any = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[Any, dict[str, str]]:
        url = f'{self.base_url}{path}'
        if params:
            url = f"{url}?{urlencode(params, safe=',.()*:', quote_via=quote)}"
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = Request(url=url, data=data, headers=headers or self._headers(), method=method)
        try:
            with urlopen(req, timeout=settings.backend_timeout_seconds) as response:
                body = response.read().decode('utf-8')
                response_headers = {key.lower(): value for key, value in response.headers.items()}
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            raise self._http_error(exc.code, path, body) from exc
        except (URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
            reason = getattr(exc, 'reason', exc)
            logger.warning('Backend network error on %s %s: %s', method, path, reason)
            raise BackendUnavailableError(f'Backend network error on {path}: {reason}') from exc

        if not body:
            return None, response_headers
        return json.loads(body), response_headers

    def _http_error(self, status: int, path: str, body: str) -> BackendError:
        code = None
        message = body or f'HTTP {status}'
        try:
            parsed = json.loads(body) if body else {}
        except json.JSONDecodeError:
            parsed = {}
        if isinstance(parsed, dict):
            code = parsed.get('code') or parsed.get('error')
            message = (
                parsed.get('message')
                or parsed.get('msg')
                or parsed.get('error_description')
                or parsed.get('error')
                or message
            )
        if path.startswith('/auth/v1/token') and status in {400, 401}:
            return InvalidCredentialsError(str(message), code=code and str(code), status=status)
        if status in {502, 503, 504}:
            return BackendUnavailableError(str(message), code=code and str(code), status=status)
        return BackendError(str(message), code=code and str(code), status=status)

    def select(self, query: Select) -> list[dict]:
        rows, _ = self._request('GET', f'/rest/v1/{query.table}', params=encode_query_params(query))
        return rows or []

    def count(self, query: Select) -> int:
        _, headers = self._request(
            'HEAD',
            f'/rest/v1/{query.table}',
            params=encode_query_params(query),
            headers=self._headers({'Prefer': 'count=exact'}),
        )
        content_range = headers.get('content-range', '')
        total = content_range.rsplit('/', 1)[-1] if '/' in content_range else ''
        return int(total) if total.isdigit() else 0

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        created, _ = self._request(
            'POST',
            f'/rest/v1/{table}',
            payload=rows,
            headers=self._headers({'Prefer': 'return=representation'}),
        )
        return created or []

    def update(self, table: str, values: dict, filters: Sequence[Filter]) -> list[dict]:
        if not filters:
            raise ValueError('Refusing to update without filters')
        updated, _ = self._request(
            'PATCH',
            f'/rest/v1/{table}',
            params=_filter_params(filters),
            payload=values,
            headers=self._headers({'Prefer': 'return=representation'}),
        )
        return updated or []

    def upsert(self, table: str, row: dict, *, on_conflict: str) -> list[dict]:
        upserted, _ = self._request(
            'POST',
            f'/rest/v1/{table}',
            params=[('on_conflict', on_conflict)],
            payload=[row],
            headers=self._headers({'Prefer': 'resolution=merge-duplicates,return=representation'}),
        )
        return upserted or []

    def delete(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError('Refusing to delete without filters')
        self._request('DELETE', f'/rest/v1/{table}', params=_filter_params(filters))

    def rpc(self, name: str, params: dict) -> Any:
        result, _ = self._request('POST', f'/rest/v1/rpc/{name}', payload=params)
        return result

    def sign_in(self, *, email: str, password: str) -> AuthSession:
        parsed, _ = self._request(
            'POST',
            '/auth/v1/token',
            params=[('grant_type', 'password')],
            payload={'email': email, 'password': password},
            headers=self._headers(token=self.anon_key),
        )
        parsed = parsed or {}
        user = parsed.get('user') or {}
        if not parsed.get('access_token') or not user.get('id'):
            raise InvalidCredentialsError('Invalid login credentials')
        return AuthSession(
            access_token=parsed['access_token'],
            refresh_token=parsed.get('refresh_token'),
            expires_in=parsed.get('expires_in'),
            user=AuthUser(id=user['id'], email=user.get('email')),
            raw=parsed,
        )

    def sign_out(self, access_token: str) -> None:
        self._request('POST', '/auth/v1/logout', headers=self._headers(token=access_token))

    def get_user(self, access_token: str) -> AuthUser | None:
        try:
            parsed, _ = self._request('GET', '/auth/v1/user', headers=self._headers(token=access_token))
        except BackendError as exc:
            if isinstance(exc, BackendUnavailableError):
                raise
            return None
        if not parsed or not parsed.get('id'):
            return None
        return AuthUser(id=parsed['id'], email=parsed.get('email'))
