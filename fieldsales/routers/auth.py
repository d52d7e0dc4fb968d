from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from fieldsales.auth import Principal, UnknownRoleError, get_current_principal
from fieldsales.config import settings
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.schemas import LoginIn, ProfileIn
from fieldsales.security.csrf import verify_csrf
from fieldsales.security.sessions import create_session_token, revoke_session
from fieldsales.services.audit_service import log_audit, log_auth_event
from fieldsales.services.backend_client import BackendUnavailableError, InvalidCredentialsError
from fieldsales.services.backend_factory import get_backend
from fieldsales.services.login_service import LoginResult, authenticate, demo_accounts_hint, is_demo_credentials
from fieldsales.services.profile_service import get_profile, update_profile

router = APIRouter(tags=['auth'])

INVALID_LOGIN_MESSAGE = 'Invalid email or password'


def _principal_payload(principal: Principal) -> dict:
    return {
        'id': principal.id,
        'email': principal.email,
        'name': principal.name,
        'role': principal.role.value,
        'shop_id': principal.shop_id,
        'is_demo': principal.is_demo,
    }


def _attempt_login(request: Request, email: str, password: str) -> LoginResult:
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')
    try:
        backend = None if is_demo_credentials(email, password) else get_backend()
        result = authenticate(backend, email=email, password=password)
    except InvalidCredentialsError:
        log_auth_event(attempted_email=email, success=False, failure_reason='BAD_CREDENTIALS', ip=ip, user_agent=user_agent)
        raise
    except UnknownRoleError:
        log_auth_event(attempted_email=email, success=False, failure_reason='UNKNOWN_ROLE', ip=ip, user_agent=user_agent)
        raise
    except ValueError as exc:
        log_auth_event(attempted_email=email, success=False, failure_reason=str(exc), ip=ip, user_agent=user_agent)
        raise

    log_auth_event(
        attempted_email=email,
        success=True,
        user_id=result.principal.id,
        ip=ip,
        user_agent=user_agent,
        demo=result.principal.is_demo,
    )
    log_audit(actor_id=result.principal.id, action='AUTH_LOGIN', ip=ip, metadata={'role': result.principal.role.value})
    return result


def _set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )


def _render_login(request: Request, error: str | None, status_code: int = 200):
    templates: Jinja2Templates = request.app.state.templates
    return templates.TemplateResponse(
        'login.html',
        {
            'request': request,
            'error': error,
            'demo_hint': demo_accounts_hint() if settings.demo_mode_enabled else None,
        },
        status_code=status_code,
    )


@router.get('/login')
def login_page(request: Request):
    if getattr(request.state, 'principal', None):
        return RedirectResponse('/', status_code=303)
    return _render_login(request, None)


@router.post('/login')
async def login_submit(request: Request, _: None = Depends(verify_csrf)):
    form = await request.form()
    email = str(form.get('email', '')).strip()
    password = str(form.get('password', ''))
    try:
        result = _attempt_login(request, email, password)
    except InvalidCredentialsError:
        return _render_login(request, INVALID_LOGIN_MESSAGE, status_code=401)
    except BackendUnavailableError:
        return _render_login(request, 'Cannot connect to server', status_code=503)
    except ValueError as exc:
        return _render_login(request, str(exc), status_code=400)

    response = RedirectResponse(result.destination if result.destination.startswith('/admin') else '/', status_code=303)
    _set_session_cookie(response, create_session_token(result.principal))
    return response


@router.post('/logout')
def logout_submit(request: Request, _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    revoke_session(getattr(request.state, 'session_token', None), principal)
    log_audit(actor_id=principal.id if principal else None, action='AUTH_LOGOUT', ip=get_client_ip(request))

    response = RedirectResponse('/login', status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.post('/api/auth/login')
def api_login(payload: LoginIn, request: Request):
    try:
        result = _attempt_login(request, payload.email, payload.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=401, detail=INVALID_LOGIN_MESSAGE) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    token = create_session_token(result.principal)
    response = JSONResponse(
        {
            'access_token': token,
            'token_type': 'bearer',
            'destination': result.destination,
            'user': _principal_payload(result.principal),
        }
    )
    _set_session_cookie(response, token)
    return response


@router.post('/api/auth/logout')
def api_logout(request: Request, principal: Principal = Depends(get_current_principal)):
    revoke_session(getattr(request.state, 'session_token', None), principal)
    log_audit(actor_id=principal.id, action='AUTH_LOGOUT', ip=get_client_ip(request))
    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/api/auth/me')
def api_me(principal: Principal = Depends(get_current_principal)):
    return _principal_payload(principal)


@router.get('/api/profile')
def profile(principal: Principal = Depends(get_current_principal)):
    if principal.is_demo:
        return _principal_payload(principal)
    stored = get_profile(get_user_backend(principal), principal.id) or {}
    return {**_principal_payload(principal), 'phone': stored.get('phone')}


@router.put('/api/profile')
def profile_update(
    payload: ProfileIn,
    request: Request,
    principal: Principal = Depends(get_current_principal),
):
    if principal.is_demo:
        raise HTTPException(status_code=400, detail='Profile changes are not saved in demo mode')
    try:
        updated = update_profile(get_user_backend(principal), user_id=principal.id, name=payload.name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='PROFILE_UPDATED', ip=get_client_ip(request), metadata={'name': updated.get('name')})
    return updated
