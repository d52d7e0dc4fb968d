from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from fieldsales.auth import Principal, Role, assert_shop_scope, require_role
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.schemas import (
    CustomerReturnIn,
    ExpenseIn,
    QuantitiesIn,
    RepTransferIn,
    RequestCreateIn,
    SaleIn,
    ShopTransferIn,
)
from fieldsales.services.admin_service import list_items, list_users_by_role
from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.income_service import EXPENSE_CATEGORIES, add_expense, income_history, list_expenses
from fieldsales.services.request_service import (
    create_request,
    get_request_for_edit,
    list_salesman_requests,
    salesman_stats,
    update_request_items,
)
from fieldsales.services.sales_service import all_activities, sales_analytics, submit_sale
from fieldsales.services.shop_service import assigned_reps, resolve_user_shop
from fieldsales.services.stock_service import (
    outlet_inventory,
    process_customer_returns,
    transfer_between_shops,
    transfer_salesman_to_rep,
)

router = APIRouter(prefix='/api/salesman', tags=['salesman'])
salesman_access = require_role(Role.SALESMAN, Role.SHOP_OWNER)


def _resolve_shop(backend: BackendClient, principal: Principal, requested_shop_id: int | None = None) -> dict:
    if requested_shop_id is not None:
        assert_shop_scope(principal, requested_shop_id)
    try:
        return resolve_user_shop(
            backend,
            user_id=principal.id,
            shop_id=requested_shop_id if requested_shop_id is not None else principal.shop_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/home')
def home(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal)
    stats = salesman_stats(backend, user_id=principal.id, shop_id=shop['id'])
    return {
        'user': {'id': principal.id, 'name': principal.name, 'role': principal.role.value},
        'shop': {'id': shop['id'], 'name': shop.get('name')},
        'stats': {**stats, 'total_income': float(stats['total_income'])},
    }


@router.get('/shop')
def my_shop(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return _resolve_shop(backend, principal)


@router.get('/items')
def items(
    _: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return list_items(backend)


@router.get('/reps')
def reps(
    _: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return list_users_by_role(backend, Role.REP.value)


@router.post('/requests', status_code=201)
def request_create(
    payload: RequestCreateIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal, payload.shop_id)
    try:
        created = create_request(backend, shop_id=shop['id'], salesman_id=principal.id, quantities=payload.quantities)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='REQUEST_CREATED',
        ip=get_client_ip(request),
        metadata={'request_id': created['id'], 'shop_id': shop['id'], 'lines': len(created.get('items') or [])},
    )
    return created


@router.get('/requests')
def request_history(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return list_salesman_requests(backend, salesman_id=principal.id)


@router.get('/requests/{request_id}')
def request_detail(
    request_id: int,
    _: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        return get_request_for_edit(backend, request_id=request_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.put('/requests/{request_id}')
def request_update(
    request_id: int,
    payload: QuantitiesIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        rows = update_request_items(backend, request_id=request_id, quantities=payload.quantities)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='REQUEST_UPDATED', ip=get_client_ip(request), metadata={'request_id': request_id})
    return {'request_id': request_id, 'items': rows}


@router.post('/sales', status_code=201)
def sale_create(
    payload: SaleIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal, payload.shop_id)
    try:
        sale = submit_sale(backend, shop_id=shop['id'], user_id=principal.id, quantities=payload.quantities)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='SALE_RECORDED',
        ip=get_client_ip(request),
        metadata={'sale_id': sale['id'], 'total_amount': sale['total_amount']},
    )
    return sale


@router.get('/analytics')
def analytics(
    period: str = 'week',
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        return sales_analytics(backend, user_id=principal.id, period=period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get('/inventory')
def inventory(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal)
    return {'shop': {'id': shop['id'], 'name': shop.get('name')}, 'items': outlet_inventory(backend, shop_id=shop['id'])}


@router.post('/transfers')
def shop_transfer(
    payload: ShopTransferIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal, payload.from_shop_id)
    try:
        result = transfer_between_shops(
            backend,
            from_shop_id=shop['id'],
            to_shop_id=payload.to_shop_id,
            quantities=payload.quantities,
            notes=payload.notes,
            user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='SHOP_TRANSFER',
        ip=get_client_ip(request),
        metadata={'from_shop_id': shop['id'], 'to_shop_id': payload.to_shop_id, 'succeeded': result.succeeded},
    )
    return result.as_dict()


@router.post('/returns')
def customer_returns(
    payload: CustomerReturnIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal, payload.shop_id)
    try:
        result = process_customer_returns(
            backend,
            shop_id=shop['id'],
            quantities=payload.quantities,
            reasons=payload.reasons,
            user_id=principal.id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='CUSTOMER_RETURN',
        ip=get_client_ip(request),
        metadata={'shop_id': shop['id'], 'succeeded': result.succeeded},
    )
    return result.as_dict()


@router.post('/transfer-to-rep')
def transfer_to_rep(
    payload: RepTransferIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        result = transfer_salesman_to_rep(
            backend,
            salesman_id=principal.id,
            rep_id=payload.rep_id,
            quantities=payload.quantities,
            notes=payload.notes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='SALESMAN_TRANSFER_TO_REP',
        ip=get_client_ip(request),
        metadata={'rep_id': payload.rep_id, 'succeeded': result.succeeded},
    )
    return result.as_dict()


@router.get('/income')
def income(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal)
    return {'shop': {'id': shop['id'], 'name': shop.get('name')}, **income_history(backend, shop_id=shop['id'])}


@router.get('/expenses')
def expenses(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return {'categories': list(EXPENSE_CATEGORIES), **list_expenses(backend, salesman_id=principal.id)}


@router.post('/expenses', status_code=201)
def expense_create(
    payload: ExpenseIn,
    request: Request,
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        expense = add_expense(
            backend,
            salesman_id=principal.id,
            amount=payload.amount,
            category=payload.category,
            description=payload.description,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='EXPENSE_ADDED', ip=get_client_ip(request), metadata={'amount': payload.amount})
    return expense


@router.get('/assigned-reps')
def reps_for_my_shop(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        return assigned_reps(backend, user_id=principal.id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/activities')
def activities(
    principal: Principal = Depends(salesman_access),
    backend: BackendClient = Depends(get_user_backend),
):
    shop = _resolve_shop(backend, principal)
    return all_activities(backend, user_id=principal.id, shop_id=shop['id'])
