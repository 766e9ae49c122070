"""Inventory and refund collaborators.

HTTP adapters talk to the external services when a URL is configured;
otherwise the local adapters are used.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

import httpx

from app.config import Settings
from app.services.errors import CollaboratorFailure

logger = logging.getLogger(__name__)


@dataclass
class RestockRequest:
    product_id: str
    quantity: int
    store_id: str
    reference: str
    variation_id: Optional[str] = None
    idempotency_key: str = ""


@dataclass
class IssuedRefund:
    amount: Decimal
    method: str
    transaction_id: Optional[str] = None
    status: str = "completed"
    processed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InventoryGateway(Protocol):
    """Adds returned units back to stock. Repeats of an ``idempotency_key`` must be no-ops."""

    async def restock(self, request: RestockRequest) -> None: ...


class RefundGateway(Protocol):
    """Pays money back. Repeats of a ``reference`` must return the original payout."""

    async def issue_refund(self, amount: Decimal, method: str, reference: str) -> IssuedRefund: ...


class LocalInventoryGateway:
    """Records restock requests for the stock ledger to pick up."""

    def __init__(self):
        self.requests: list[RestockRequest] = []
        self._applied: set[str] = set()

    async def restock(self, request: RestockRequest) -> None:
        key = request.idempotency_key
        if key and key in self._applied:
            logger.info(f"Restock {key} already applied, skipping")
            return
        if key:
            self._applied.add(key)
        self.requests.append(request)
        logger.info(
            f"Restock {request.quantity} x {request.product_id}"
            f"{'/' + request.variation_id if request.variation_id else ''} "
            f"at store {request.store_id} (ref {request.reference})"
        )


class LocalRefundGateway:
    """Settles refunds synchronously at the register."""

    def __init__(self):
        self._issued: dict[str, IssuedRefund] = {}

    async def issue_refund(self, amount: Decimal, method: str, reference: str) -> IssuedRefund:
        if reference in self._issued:
            logger.info(f"Refund {reference} already issued, returning original payout")
            return self._issued[reference]
        txn = f"{method.upper()}-{uuid.uuid4().hex[:10].upper()}"
        logger.info(f"Refund {amount} via {method} for {reference}: {txn}")
        issued = IssuedRefund(amount=amount, method=method, transaction_id=txn)
        self._issued[reference] = issued
        return issued


class HttpInventoryGateway:
    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def restock(self, request: RestockRequest) -> None:
        payload = {
            "product_id": request.product_id,
            "variation_id": request.variation_id,
            "quantity": request.quantity,
            "store_id": request.store_id,
            "reason": "return",
            "reference": request.reference,
        }
        headers = {"Idempotency-Key": request.idempotency_key} if request.idempotency_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/inventory/restock", json=payload, headers=headers)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Restock failed for {request.product_id} (ref {request.reference}): {e}")
            raise CollaboratorFailure("inventory", str(e)) from e


class HttpRefundGateway:
    def __init__(self, base_url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def issue_refund(self, amount: Decimal, method: str, reference: str) -> IssuedRefund:
        payload = {"amount": str(amount), "method": method, "reference": reference}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/refunds", json=payload, headers={"Idempotency-Key": reference},
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Refund issuance failed for {reference}: {e}")
            raise CollaboratorFailure("refunds", str(e)) from e
        return IssuedRefund(
            amount=amount,
            method=method,
            transaction_id=data.get("transaction_id"),
            status=data.get("status", "completed"),
        )


def build_inventory_gateway(settings: Settings) -> InventoryGateway:
    if settings.inventory_service_url:
        return HttpInventoryGateway(settings.inventory_service_url, settings.collaborator_timeout)
    return LocalInventoryGateway()


def build_refund_gateway(settings: Settings) -> RefundGateway:
    if settings.refund_service_url:
        return HttpRefundGateway(settings.refund_service_url, settings.collaborator_timeout)
    return LocalRefundGateway()
