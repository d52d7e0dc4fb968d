from __future__ import annotations

from fieldsales.services.backend_client import BackendClient, Select, eq, select_one_or_none


def get_profile(backend: BackendClient, user_id: str) -> dict | None:
    return select_one_or_none(backend, Select('users').where(eq('id', user_id)))


def get_profile_by_email(backend: BackendClient, email: str) -> dict | None:
    return select_one_or_none(backend, Select('users').where(eq('email', email)))


def display_name(profile: dict | None, email: str | None, *, fallback: str = 'User') -> str:
    if profile and (profile.get('name') or '').strip():
        return profile['name'].strip()
    local_part = (email or '').split('@')[0]
    if not local_part:
        return fallback
    return local_part[:1].upper() + local_part[1:]


def update_profile(backend: BackendClient, *, user_id: str, name: str) -> dict:
    clean_name = name.strip()
    if not clean_name:
        raise ValueError('Name is required')
    updated = backend.update('users', {'name': clean_name}, [eq('id', user_id)])
    if not updated:
        raise ValueError('User not found')
    return updated[0]
