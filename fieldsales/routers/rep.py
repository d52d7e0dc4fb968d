from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from fieldsales.auth import Principal, Role, require_role
from fieldsales.dependencies import get_client_ip, get_user_backend
from fieldsales.schemas import DeliveryIn, QuantitiesIn, ShopTransferIn
from fieldsales.services.audit_service import log_audit
from fieldsales.services.backend_client import BackendClient
from fieldsales.services.request_service import deliver, list_pending_requests_for_rep, shop_request_sections
from fieldsales.services.shop_service import shops_for_rep
from fieldsales.services.stock_service import (
    rep_inventory_history,
    rep_stock,
    return_to_storekeeper,
    transfer_between_shops,
)

router = APIRouter(prefix='/api/rep', tags=['rep'])
rep_access = require_role(Role.REP)


@router.get('/home')
def home(
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    stock = rep_stock(backend, rep_id=principal.id)
    pending = list_pending_requests_for_rep(backend, rep_id=principal.id)
    return {
        'user': {'id': principal.id, 'name': principal.name},
        'shop_count': len(shops_for_rep(backend, rep_id=principal.id)),
        'stock_items': len(stock),
        'stock_units': sum(row['qty'] for row in stock),
        'pending_requests': sum(len(section['requests']) for section in pending),
    }


@router.get('/shops')
def shops(
    search: str | None = None,
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return shops_for_rep(backend, rep_id=principal.id, search=search)


@router.get('/stock')
def stock(
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return rep_stock(backend, rep_id=principal.id)


@router.get('/inventory-history')
def inventory_history(
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return rep_inventory_history(backend, rep_id=principal.id)


@router.get('/requests')
def pending_requests(
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    return list_pending_requests_for_rep(backend, rep_id=principal.id)


@router.get('/shops/{shop_id}/requests')
def shop_requests(
    shop_id: int,
    tab: str = 'pending',
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        view = shop_request_sections(backend, shop_id=shop_id, rep_id=principal.id, tab=tab)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        **view,
        'sections': [
            {'title': section['title'], 'groups': [group.as_dict() for group in section['groups']]}
            for section in view['sections']
        ],
    }


@router.post('/shops/{shop_id}/deliveries')
def delivery_create(
    shop_id: int,
    payload: DeliveryIn,
    request: Request,
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        result = deliver(
            backend,
            shop_id=shop_id,
            rep_id=principal.id,
            date_label=payload.date_label,
            item_id=payload.item_id,
            qty=payload.qty,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        actor_id=principal.id,
        action='REQUEST_DELIVERED',
        ip=get_client_ip(request),
        metadata={'shop_id': shop_id, 'item_id': payload.item_id, 'qty': payload.qty},
    )
    return result


@router.post('/transfers')
def shop_transfer(
    payload: ShopTransferIn,
    request: Request,
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    if payload.from_shop_id is None:
        raise HTTPException(status_code=400, detail='Please select a source shop')
    try:
        result = transfer_between_shops(
            backend,
            from_shop_id=payload.from_shop_id,
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
        metadata={'from_shop_id': payload.from_shop_id, 'to_shop_id': payload.to_shop_id, 'succeeded': result.succeeded},
    )
    return result.as_dict()


@router.post('/return-to-store')
def return_stock(
    payload: QuantitiesIn,
    request: Request,
    principal: Principal = Depends(rep_access),
    backend: BackendClient = Depends(get_user_backend),
):
    try:
        returned = return_to_storekeeper(backend, rep_id=principal.id, quantities=payload.quantities)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(actor_id=principal.id, action='REP_RETURN_TO_STORE', ip=get_client_ip(request), metadata={'items': returned})
    return {'returned_items': returned}
