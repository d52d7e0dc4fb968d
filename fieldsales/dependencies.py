from fastapi import Depends, Request

from fieldsales.auth import Principal, get_current_principal
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.backend_factory import get_backend


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_user_backend(principal: Principal = Depends(get_current_principal)) -> BackendClient:
    """Backend client acting as the signed-in user, so row-level security applies."""
    return get_backend().with_access_token(principal.access_token)
