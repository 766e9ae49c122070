"""Returns & refunds API routes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.schemas import (
    EligibleLineOut,
    ReturnCreate,
    ReturnOut,
    ReturnPageOut,
    ReturnUpdate,
    SaleEligibilityOut,
    StatusUpdate,
)
from app.services.errors import (
    CollaboratorFailure,
    InvalidTransition,
    ReturnError,
    ReturnNotFound,
    ReturnValidationError,
    SaleNotFound,
    StaleStatus,
)
from app.services.gateways import (
    InventoryGateway,
    RefundGateway,
    build_inventory_gateway,
    build_refund_gateway,
)
from app.services.refund_calc import RefundSplit
from app.services.returns import ReturnableSale, ReturnsManager
from app.services.validation import ReturnItemInput, ReturnRequest

router = APIRouter(prefix="/returns", tags=["returns"])
settings = get_settings()

_inventory = build_inventory_gateway(settings)
_refunds = build_refund_gateway(settings)


def get_inventory_gateway() -> InventoryGateway:
    return _inventory


def get_refund_gateway() -> RefundGateway:
    return _refunds


def get_manager(
    db: AsyncSession = Depends(get_db),
    inventory: InventoryGateway = Depends(get_inventory_gateway),
    refunds: RefundGateway = Depends(get_refund_gateway),
) -> ReturnsManager:
    return ReturnsManager(db, inventory, refunds, settings)


def _http_error(e: ReturnError) -> HTTPException:
    if isinstance(e, ReturnValidationError):
        return HTTPException(status_code=400, detail=[i.to_dict() for i in e.issues])
    if isinstance(e, (ReturnNotFound, SaleNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (InvalidTransition, StaleStatus)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, CollaboratorFailure):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _sale_out(sale: ReturnableSale) -> SaleEligibilityOut:
    snap = sale.snapshot
    return SaleEligibilityOut(
        sale_id=snap.sale_id,
        sale_number=snap.sale_number,
        store_id=snap.store_id,
        customer_name=snap.customer_name,
        total_amount=snap.total_amount,
        created_at=sale.created_at,
        return_status=sale.return_status,
        returnable_amount=sale.returnable_amount,
        has_returnable_items=sale.has_returnable_items,
        lines=[EligibleLineOut.model_validate(line) for line in sale.lines],
    )


# --- Listing & reports ---

@router.get("/", response_model=ReturnPageOut)
async def list_returns(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    status: Optional[str] = None,
    store_id: Optional[str] = None,
    sale_id: Optional[UUID] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    mgr: ReturnsManager = Depends(get_manager),
):
    result = await mgr.list_returns(status, store_id, search, start_date, end_date, sale_id, page, limit)
    return ReturnPageOut(
        items=[ReturnOut.model_validate(r) for r in result.items],
        page=result.page,
        limit=result.limit,
        total=result.total,
        pages=result.pages,
    )


@router.get("/stats")
async def return_stats(
    store_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    top: int = Query(10, ge=1, le=50),
    mgr: ReturnsManager = Depends(get_manager),
):
    return await mgr.stats(store_id, start_date, end_date, top)


# --- Sale lookup ---

@router.get("/sales", response_model=list[SaleEligibilityOut])
async def list_returnable_sales(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=settings.max_page_size),
    store_id: Optional[str] = None,
    search: Optional[str] = None,
    mgr: ReturnsManager = Depends(get_manager),
):
    sales = await mgr.list_returnable_sales(store_id, search, page, limit)
    return [_sale_out(s) for s in sales]


@router.get("/sales/{sale_id}/lines", response_model=SaleEligibilityOut)
async def get_returnable_lines(sale_id: UUID, mgr: ReturnsManager = Depends(get_manager)):
    try:
        return _sale_out(await mgr.get_sale_eligibility(sale_id))
    except ReturnError as e:
        raise _http_error(e)


# --- Return CRUD & lifecycle ---

@router.post("/", response_model=ReturnOut, status_code=201)
async def create_return(body: ReturnCreate, mgr: ReturnsManager = Depends(get_manager)):
    request = ReturnRequest(
        sale_id=str(body.sale_id),
        store_id=body.store_id,
        user_id=body.user_id,
        items=[
            ReturnItemInput(
                sale_item_id=str(item.sale_item_id),
                quantity=item.quantity,
                condition=item.condition,
                return_reason=item.return_reason,
                restock=item.restock,
                notes=item.notes,
            )
            for item in body.items
        ],
        refund_type=body.refund_type,
        restock_items=body.restock_items,
        notes=body.notes,
    )
    try:
        return await mgr.create_return(request)
    except ReturnError as e:
        raise _http_error(e)


@router.get("/{return_id}", response_model=ReturnOut)
async def get_return(return_id: UUID, mgr: ReturnsManager = Depends(get_manager)):
    try:
        return await mgr.get_return(return_id)
    except ReturnError as e:
        raise _http_error(e)


@router.patch("/{return_id}", response_model=ReturnOut)
async def update_return(return_id: UUID, body: ReturnUpdate, mgr: ReturnsManager = Depends(get_manager)):
    try:
        return await mgr.update_return(
            return_id, body.notes, body.refund_type, body.restock_items, body.expected_status,
        )
    except ReturnError as e:
        raise _http_error(e)


@router.put("/{return_id}/status", response_model=ReturnOut)
async def update_return_status(
    return_id: UUID,
    body: StatusUpdate,
    mgr: ReturnsManager = Depends(get_manager),
):
    splits = [RefundSplit(amount=s.amount, method=s.method) for s in body.refunds or []]
    try:
        return await mgr.update_status(
            return_id, body.status, body.actor_id, body.comment, body.expected_status, splits or None,
        )
    except ReturnError as e:
        raise _http_error(e)


@router.delete("/{return_id}", status_code=204)
async def delete_return(
    return_id: UUID,
    expected_status: Optional[str] = None,
    mgr: ReturnsManager = Depends(get_manager),
):
    try:
        await mgr.delete_return(return_id, expected_status)
    except ReturnError as e:
        raise _http_error(e)
    return Response(status_code=204)
