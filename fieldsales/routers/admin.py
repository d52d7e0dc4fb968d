from __future__ import annotations

import csv
from io import StringIO

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, StreamingResponse

from fieldsales.auth import Principal, Role, require_role
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.security.csrf import verify_csrf
from fieldsales.services.admin_service import (
    create_item,
    create_route,
    create_shop,
    delete_item,
    delete_route,
    delete_shop,
    get_user,
    list_items,
    list_routes,
    list_shops,
    list_users,
    list_users_by_role,
    stock_overview,
    stock_value,
    update_item,
    update_route,
    update_shop,
    update_user,
)
from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.income_service import all_income
from fieldsales.services.profile_service import update_profile
from fieldsales.services.sales_service import admin_dashboard, sales_history

router = APIRouter(prefix='/admin', tags=['admin'])
admin_access = require_role(Role.ADMIN)

DASHBOARD_WINDOWS = (7, 30, 90)


def _render(request: Request, template: str, principal: Principal, **context):
    return request.app.state.templates.TemplateResponse(
        template,
        {'request': request, 'principal': principal, **context},
    )


def _form_text(form, key: str) -> str:
    return str(form.get(key, '')).strip()


@router.get('/dashboard')
def dashboard(
    request: Request,
    days: int = 30,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    if days not in DASHBOARD_WINDOWS:
        days = 30
    data = admin_dashboard(backend, days=days)
    return _render(request, 'admin_dashboard.html', principal, data=data, windows=DASHBOARD_WINDOWS)


@router.get('/items')
def items_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(request, 'admin_items.html', principal, items=list_items(backend))


@router.post('/items/create')
async def item_create(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        item = create_item(
            backend,
            name=_form_text(form, 'name'),
            unit_of_measure=_form_text(form, 'unit_of_measure'),
            price=_form_text(form, 'price') or 0,
            minimum_level=_form_text(form, 'minimum_level'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='ITEM_CREATED', ip=get_client_ip(request), metadata={'item_id': item['id']})
    return RedirectResponse('/admin/items', status_code=303)


@router.post('/items/{item_id}/update')
async def item_update(
    item_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_item(
            backend,
            item_id=item_id,
            name=_form_text(form, 'name'),
            unit_of_measure=_form_text(form, 'unit_of_measure'),
            price=_form_text(form, 'price') or 0,
            minimum_level=_form_text(form, 'minimum_level'),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='ITEM_UPDATED', ip=get_client_ip(request), metadata={'item_id': item_id})
    return RedirectResponse('/admin/items', status_code=303)


@router.post('/items/{item_id}/delete')
def item_delete(
    item_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    delete_item(backend, item_id=item_id)
    log_audit(actor_id=principal.id, action='ITEM_DELETED', ip=get_client_ip(request), metadata={'item_id': item_id})
    return RedirectResponse('/admin/items', status_code=303)


@router.get('/shops')
def shops_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(
        request,
        'admin_shops.html',
        principal,
        shops=list_shops(backend),
        routes=list_routes(backend),
        reps=list_users_by_role(backend, Role.REP.value),
        owners=list_users_by_role(backend, Role.SHOP_OWNER.value),
    )


def _shop_fields(form) -> dict:
    return {
        'name': _form_text(form, 'name'),
        'address': _form_text(form, 'address'),
        'owner_id': _form_text(form, 'owner_id'),
        'route_id': _form_text(form, 'route_id'),
        'rep_id': _form_text(form, 'rep_id'),
    }


@router.post('/shops/create')
async def shop_create(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        shop = create_shop(backend, **_shop_fields(form))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='SHOP_CREATED', ip=get_client_ip(request), metadata={'shop_id': shop['id']})
    return RedirectResponse('/admin/shops', status_code=303)


@router.post('/shops/{shop_id}/update')
async def shop_update(
    shop_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_shop(backend, shop_id=shop_id, **_shop_fields(form))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='SHOP_UPDATED', ip=get_client_ip(request), metadata={'shop_id': shop_id})
    return RedirectResponse('/admin/shops', status_code=303)


@router.post('/shops/{shop_id}/delete')
def shop_delete(
    shop_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    delete_shop(backend, shop_id=shop_id)
    log_audit(actor_id=principal.id, action='SHOP_DELETED', ip=get_client_ip(request), metadata={'shop_id': shop_id})
    return RedirectResponse('/admin/shops', status_code=303)


@router.get('/routes')
def routes_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(
        request,
        'admin_routes.html',
        principal,
        routes=list_routes(backend),
        shops=list_shops(backend),
        reps=list_users_by_role(backend, Role.REP.value),
    )


@router.post('/routes/create')
async def route_create(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        route = create_route(
            backend,
            name=_form_text(form, 'name'),
            rep_id=_form_text(form, 'rep_id'),
            shop_ids=form.getlist('shop_ids'),
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='ROUTE_CREATED', ip=get_client_ip(request), metadata={'route_id': route['id']})
    return RedirectResponse('/admin/routes', status_code=303)


@router.post('/routes/{route_id}/update')
async def route_update(
    route_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        update_route(
            backend,
            route_id=route_id,
            name=_form_text(form, 'name'),
            rep_id=_form_text(form, 'rep_id'),
            shop_ids=form.getlist('shop_ids'),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='ROUTE_UPDATED', ip=get_client_ip(request), metadata={'route_id': route_id})
    return RedirectResponse('/admin/routes', status_code=303)


@router.post('/routes/{route_id}/delete')
def route_delete(
    route_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    delete_route(backend, route_id=route_id)
    log_audit(actor_id=principal.id, action='ROUTE_DELETED', ip=get_client_ip(request), metadata={'route_id': route_id})
    return RedirectResponse('/admin/routes', status_code=303)


@router.get('/users')
def users_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(
        request,
        'admin_users.html',
        principal,
        users=list_users(backend),
        shops=list_shops(backend),
        roles=[role.value for role in Role],
    )


@router.post('/users/{user_id}/update')
async def user_update(
    user_id: str,
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        get_user(backend, user_id)
        updated = update_user(
            backend,
            user_id=user_id,
            name=_form_text(form, 'name'),
            role=_form_text(form, 'role'),
            shop_id=_form_text(form, 'shop_id'),
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='USER_UPDATED',
        ip=get_client_ip(request),
        metadata={'user_id': user_id, 'role': updated.get('role')},
    )
    return RedirectResponse('/admin/users', status_code=303)


@router.get('/stock')
def stock_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    rows = stock_overview(backend)
    return _render(request, 'admin_stock.html', principal, rows=rows, total_value=stock_value(rows))


@router.get('/daily-income')
def daily_income_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(request, 'admin_daily_income.html', principal, records=all_income(backend))


@router.get('/daily-income.csv')
def daily_income_export(
    _: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(['date', 'shop', 'total_sales', 'cash_sales', 'credit_sales', 'notes'])
    for row in all_income(backend):
        writer.writerow(
            [
                row.get('date'),
                row.get('shop_name'),
                row.get('total_sales'),
                row.get('cash_sales'),
                row.get('credit_sales'),
                row.get('notes') or '',
            ]
        )
    buffer.seek(0)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type='text/csv',
        headers={'Content-Disposition': 'attachment; filename="daily_income.csv"'},
    )


@router.get('/sales')
def sales_page(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _render(request, 'admin_sales.html', principal, sales=sales_history(backend))


@router.get('/settings')
def settings_page(request: Request, principal: Principal = Depends(admin_access)):
    return _render(request, 'admin_settings.html', principal, saved=request.query_params.get('saved') == '1')


@router.post('/settings')
async def settings_update(
    request: Request,
    principal: Principal = Depends(admin_access),
    backend: BackendClient = Depends(get_user_backend),
    _: None = Depends(verify_csrf),
):
    if principal.is_demo:
        raise HTTPException(status_code=400, detail='Profile changes are not saved in demo mode')
    form = await request.form()
    try:
        update_profile(backend, user_id=principal.id, name=_form_text(form, 'name'))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='PROFILE_UPDATED', ip=get_client_ip(request))
    return RedirectResponse('/admin/settings?saved=1', status_code=303)
