from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from fieldsales.auth import Principal, Role, assert_shop_scope, require_role
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.schemas import DailyIncomeIn
from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.income_service import IncomeMismatchWarning, shop_owner_overview, submit_daily_income
from fieldsales.services.shop_service import resolve_user_shop

router = APIRouter(prefix='/api/shop-owner', tags=['shop-owner'])
owner_access = require_role(Role.SHOP_OWNER, Role.SALESMAN)


@router.get('/home')
def home(
    principal: Principal = Depends(owner_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        return shop_owner_overview(backend, user_id=principal.id, shop_id=principal.shop_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('/income', status_code=201)
def income_create(
    payload: DailyIncomeIn,
    request: Request,
    principal: Principal = Depends(owner_access),
    backend: BackendClient = Depends(get_user_backend),
):
    if payload.shop_id is not None:
        assert_shop_scope(principal, payload.shop_id)
    try:
        shop = resolve_user_shop(backend, user_id=principal.id, shop_id=payload.shop_id or principal.shop_id)
        record = submit_daily_income(
            backend,
            shop_id=shop['id'],
            day=payload.date,
            total_sales=payload.total_sales,
            cash_sales=payload.cash_sales,
            credit_sales=payload.credit_sales,
            notes=payload.notes,
            confirm=payload.confirm,
        )
    except IncomeMismatchWarning as exc:
        # The client may resubmit with confirm set.
        return JSONResponse({'detail': str(exc), 'requires_confirmation': True}, status_code=409)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='DAILY_INCOME_SUBMITTED',
        ip=get_client_ip(request),
        metadata={'shop_id': shop['id'], 'total_sales': payload.total_sales},
    )
    return record
