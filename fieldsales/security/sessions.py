from __future__ import annotations

import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from fieldsales.auth import Principal
from fieldsales.config import settings
from fieldsales.services.backend_client import BackendClient, BackendUnavailableError
from fieldsales.services.backend_factory import get_backend
from fieldsales.services.login_service import load_principal, logout

logger = logging.getLogger(__name__)

AUTH_EXEMPT_PATHS = {'/login', '/robots.txt', '/api/auth/login'}
DEMO_TOKEN_PREFIX = 'demo.'


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


class DemoSessionRegistry:
    """Demo principals keyed by opaque token. Process local, never sent to the backend."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, tuple[Principal, datetime]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_expired(self) -> None:
        now = _now()
        expired = [token for token, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for token in expired:
            del self._sessions[token]

    def create(self, principal: Principal) -> str:
        token = DEMO_TOKEN_PREFIX + secrets.token_urlsafe(32)
        with self._lock:
            self._purge_expired()
            self._sessions[token] = (principal, _session_expiry())
        return token

    def get(self, token: str) -> Principal | None:
        with self._lock:
            entry = self._sessions.get(token)
            if entry is None:
                return None
            principal, expires_at = entry
            if expires_at <= _now():
                del self._sessions[token]
                return None
            self._sessions[token] = (principal, _session_expiry())
            return principal

    def revoke(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


demo_sessions = DemoSessionRegistry()


def is_demo_token(token: str | None) -> bool:
    return bool(token) and token.startswith(DEMO_TOKEN_PREFIX)


def create_session_token(principal: Principal) -> str:
    if principal.is_demo:
        return demo_sessions.create(principal)
    if not principal.access_token:
        raise ValueError('Signed-in user has no access token')
    return principal.access_token


def revoke_session(token: str | None, principal: Principal | None, backend: BackendClient | None = None) -> None:
    if is_demo_token(token):
        demo_sessions.revoke(token)
        return
    if principal is None or principal.is_demo:
        return
    logout(backend or get_backend(), principal)


def request_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization') or ''
    scheme, _, credentials = authorization.partition(' ')
    if scheme.lower() == 'bearer' and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.session_cookie_name)


def load_principal_from_token(token: str | None, backend: BackendClient | None = None) -> Principal | None:
    if not token:
        return None
    if is_demo_token(token):
        return demo_sessions.get(token)
    return load_principal(backend or get_backend(), token)


def _is_api_path(path: str) -> bool:
    return path.startswith('/api/')


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = request_token(request)
        try:
            principal = await run_in_threadpool(load_principal_from_token, token)
        except BackendUnavailableError as exc:
            logger.warning('Session lookup failed: %s', exc)
            if _is_api_path(request.url.path):
                return JSONResponse({'detail': 'Cannot connect to server', 'retryable': True}, status_code=503)
            principal = None
        request.state.principal = principal
        request.state.session_token = token if principal else None

        if request.url.path not in AUTH_EXEMPT_PATHS and principal is None:
            if _is_api_path(request.url.path):
                return JSONResponse({'detail': 'Not authenticated'}, status_code=401)
            return RedirectResponse('/login', status_code=303)

        response = await call_next(request)
        return response
