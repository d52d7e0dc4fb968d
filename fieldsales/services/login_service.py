"""Sign-in and role routing.

Demo credentials (``<role>@<demo domain>`` with the demo password) are
answered locally and never reach the backend client.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from fieldsales.auth import Principal, UnknownRoleError, dashboard_for_role, resolve_role
from fieldsales.config import settings
from fieldsales.services.backend_client import AuthUser, BackendClient, BackendError, BackendUnavailableError
from fieldsales.services.profile_service import display_name, get_profile, get_profile_by_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    principal: Principal
    destination: str


def demo_accounts_hint() -> str:
    domain = settings.demo_email_domain
    return f'Try: salesman@{domain}, rep@{domain}, or keeper@{domain}'


def is_demo_credentials(email: str, password: str) -> bool:
    if not settings.demo_mode_enabled:
        return False
    return email.strip().lower().endswith(f'@{settings.demo_email_domain.lower()}') and password == settings.demo_password


def demo_login(email: str) -> LoginResult:
    local_part = email.strip().split('@')[0]
    try:
        role = resolve_role(local_part)
    except UnknownRoleError as exc:
        raise UnknownRoleError(local_part, hint=demo_accounts_hint()) from exc
    logger.info('Demo mode login for role %s', role.value)
    principal = Principal(
        id=f'demo-{role.value}',
        email=email.strip(),
        name=display_name(None, email),
        role=role,
        shop_id=None,
        is_demo=True,
    )
    return LoginResult(principal=principal, destination=dashboard_for_role(role))


def principal_from_profile(profile: dict, *, auth_user: AuthUser, access_token: str | None) -> Principal:
    role = resolve_role(profile.get('role'))
    return Principal(
        id=str(profile.get('id') or auth_user.id),
        email=profile.get('email') or auth_user.email or '',
        name=display_name(profile, auth_user.email),
        role=role,
        shop_id=profile.get('shop_id'),
        access_token=access_token,
    )


def authenticate(backend: BackendClient | None, *, email: str, password: str) -> LoginResult:
    email = (email or '').strip()
    if not email or not password:
        raise ValueError('Please enter both email and password')

    if is_demo_credentials(email, password):
        return demo_login(email)

    session = backend.sign_in(email=email, password=password)
    scoped = backend.with_access_token(session.access_token)
    try:
        profile = get_profile_by_email(scoped, session.user.email or email)
    except BackendUnavailableError:
        raise
    except BackendError as exc:
        logger.warning('Could not load profile for %s: %s', email, exc)
        profile = None
    if profile is None:
        raise ValueError('Could not fetch user information. Please try demo mode: ' + demo_accounts_hint())

    principal = principal_from_profile(profile, auth_user=session.user, access_token=session.access_token)
    return LoginResult(principal=principal, destination=dashboard_for_role(principal.role))


def load_principal(backend: BackendClient, access_token: str) -> Principal | None:
    auth_user = backend.get_user(access_token)
    if auth_user is None:
        return None
    scoped = backend.with_access_token(access_token)
    profile = get_profile(scoped, auth_user.id)
    if profile is None and auth_user.email:
        profile = get_profile_by_email(scoped, auth_user.email)
    if profile is None:
        return None
    try:
        return principal_from_profile(profile, auth_user=auth_user, access_token=access_token)
    except UnknownRoleError:
        logger.warning('User %s has an unrecognized role %r', auth_user.id, profile.get('role'))
        return None


def logout(backend: BackendClient, principal: Principal | None) -> None:
    if principal is None or principal.is_demo or not principal.access_token:
        return
    try:
        backend.sign_out(principal.access_token)
    except BackendError as exc:
        logger.warning('Sign-out failed for %s: %s', principal.id, exc)

