from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from fieldsales.auth import Principal, Role, require_role
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.schemas import StoreActionIn
from fieldsales.services.admin_service import list_users_by_role
from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.stock_service import (
    central_inventory,
    record_store_action,
    storekeeper_dashboard,
    storekeeper_history,
)

router = APIRouter(prefix='/api/storekeeper', tags=['storekeeper'])
storekeeper_access = require_role(Role.STOREKEEPER)


@router.get('/home')
def home(
    principal: Principal = Depends(storekeeper_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return {'user': {'id': principal.id, 'name': principal.name}, **storekeeper_dashboard(backend)}


@router.get('/inventory')
def inventory(
    _: Principal = Depends(storekeeper_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return central_inventory(backend)


@router.get('/reps')
def reps(
    _: Principal = Depends(storekeeper_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return list_users_by_role(backend, Role.REP.value)


@router.post('/actions')
def store_action(
    payload: StoreActionIn,
    request: Request,
    principal: Principal = Depends(storekeeper_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        result = record_store_action(
            backend,
            action=payload.action,
            item_id=payload.item_id,
            qty=payload.qty,
            rep_id=payload.rep_id,
            reference=payload.reference,
            remarks=payload.remarks,
            reason=payload.reason,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action=f'STORE_{payload.action.strip().upper()}',
        ip=get_client_ip(request),
        metadata={'item_id': payload.item_id, 'qty': payload.qty, 'rep_id': payload.rep_id, 'new_qty': result['new_qty']},
    )
    return result


@router.get('/history')
def history(
    limit: int | None = None,
    _: Principal = Depends(storekeeper_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return storekeeper_history(backend, limit=limit)
