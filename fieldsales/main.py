import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from fieldsales.auth import dashboard_for_role, get_current_principal
from fieldsales.config import settings
from fieldsales.logging_setup import configure_logging
from fieldsales.routers import admin, auth, rep, salesman, shop_owner, storekeeper
from fieldsales.security.csrf import install_csrf_cookie_middleware
from fieldsales.security.headers import install_security_headers
from fieldsales.security.sessions import install_auth_session_middleware
from fieldsales.services.backend_client import BackendError, BackendUnavailableError, RecordNotFoundError

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_title)

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


app.state.templates.env.globals['csrf_token'] = _csrf_token

install_auth_session_middleware(app)
install_security_headers(app)
install_csrf_cookie_middleware(app)

app.include_router(auth.router)
app.include_router(salesman.router)
app.include_router(shop_owner.router)
app.include_router(rep.router)
app.include_router(storekeeper.router)
app.include_router(admin.router)


@app.exception_handler(BackendUnavailableError)
async def backend_unavailable_handler(request: Request, exc: BackendUnavailableError):
    logger.warning('Backend unavailable on %s %s: %s', request.method, request.url.path, exc)
    return JSONResponse({'detail': 'Cannot connect to server', 'retryable': True}, status_code=503)


@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request: Request, exc: RecordNotFoundError):
    return JSONResponse({'detail': exc.message}, status_code=404)


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.error('Backend error on %s %s: %s (code=%s)', request.method, request.url.path, exc, exc.code)
    return JSONResponse({'detail': exc.message, 'code': exc.code}, status_code=502)


@app.get('/')
def root(request: Request):
    principal = get_current_principal(request)
    return RedirectResponse(dashboard_for_role(principal.role), status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
