"""Inventory and refund collaborator tests."""

import json
from decimal import Decimal

import httpx
import pytest

from app.config import Settings
from app.services.errors import CollaboratorFailure
from app.services.gateways import (
    HttpInventoryGateway,
    HttpRefundGateway,
    LocalInventoryGateway,
    LocalRefundGateway,
    RestockRequest,
    build_inventory_gateway,
    build_refund_gateway,
)


def _restock():
    return RestockRequest(product_id="prod-1", quantity=2, store_id="store-1", reference="RET-1")


class TestLocalGateways:
    @pytest.mark.asyncio
    async def test_local_inventory_records(self):
        gw = LocalInventoryGateway()
        await gw.restock(_restock())
        assert gw.requests[0].quantity == 2

    @pytest.mark.asyncio
    async def test_local_inventory_skips_repeated_key(self):
        gw = LocalInventoryGateway()
        request = _restock()
        request.idempotency_key = "RET-1:line-a"
        await gw.restock(request)
        await gw.restock(request)
        assert len(gw.requests) == 1

    @pytest.mark.asyncio
    async def test_local_refund_repeated_reference_returns_original(self):
        gw = LocalRefundGateway()
        first = await gw.issue_refund(Decimal("12.00"), "cash", "RET-1-1")
        again = await gw.issue_refund(Decimal("12.00"), "cash", "RET-1-1")
        other = await gw.issue_refund(Decimal("10.00"), "credit", "RET-1-2")
        assert again.transaction_id == first.transaction_id
        assert other.transaction_id != first.transaction_id

    @pytest.mark.asyncio
    async def test_local_refund_issues_transaction(self):
        issued = await LocalRefundGateway().issue_refund(Decimal("22.00"), "cash", "RET-1")
        assert issued.amount == Decimal("22.00")
        assert issued.transaction_id.startswith("CASH-")
        assert issued.status == "completed"

    def test_builders_default_to_local(self):
        s = Settings(inventory_service_url="", refund_service_url="")
        assert isinstance(build_inventory_gateway(s), LocalInventoryGateway)
        assert isinstance(build_refund_gateway(s), LocalRefundGateway)

    def test_builders_use_http_when_configured(self):
        s = Settings(inventory_service_url="http://stock", refund_service_url="http://pay")
        assert isinstance(build_inventory_gateway(s), HttpInventoryGateway)
        assert isinstance(build_refund_gateway(s), HttpRefundGateway)


class TestHttpInventoryGateway:
    @pytest.mark.asyncio
    async def test_posts_restock(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content), request.headers.get("Idempotency-Key")))
            return httpx.Response(204)

        gw = HttpInventoryGateway("http://stock/", transport=httpx.MockTransport(handler))
        request = _restock()
        request.idempotency_key = "RET-1:line-a"
        await gw.restock(request)
        path, body, key = seen[0]
        assert key == "RET-1:line-a"
        assert path == "/inventory/restock"
        assert body["product_id"] == "prod-1"
        assert body["quantity"] == 2
        assert body["reason"] == "return"

    @pytest.mark.asyncio
    async def test_error_status_is_collaborator_failure(self):
        gw = HttpInventoryGateway(
            "http://stock", transport=httpx.MockTransport(lambda r: httpx.Response(503)),
        )
        with pytest.raises(CollaboratorFailure) as exc:
            await gw.restock(_restock())
        assert exc.value.collaborator == "inventory"

    @pytest.mark.asyncio
    async def test_connection_error_is_collaborator_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        gw = HttpInventoryGateway("http://stock", transport=httpx.MockTransport(handler))
        with pytest.raises(CollaboratorFailure):
            await gw.restock(_restock())


class TestHttpRefundGateway:
    @pytest.mark.asyncio
    async def test_issues_refund(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body == {"amount": "22.00", "method": "card", "reference": "RET-1"}
            assert request.headers["Idempotency-Key"] == "RET-1"
            return httpx.Response(201, json={"transaction_id": "PAY-42", "status": "completed"})

        gw = HttpRefundGateway("http://pay", transport=httpx.MockTransport(handler))
        issued = await gw.issue_refund(Decimal("22.00"), "card", "RET-1")
        assert issued.transaction_id == "PAY-42"
        assert issued.amount == Decimal("22.00")

    @pytest.mark.asyncio
    async def test_declined_is_collaborator_failure(self):
        gw = HttpRefundGateway(
            "http://pay", transport=httpx.MockTransport(lambda r: httpx.Response(402)),
        )
        with pytest.raises(CollaboratorFailure) as exc:
            await gw.issue_refund(Decimal("5.00"), "card", "RET-2")
        assert exc.value.collaborator == "refunds"

    @pytest.mark.asyncio
    async def test_bad_json_is_collaborator_failure(self):
        gw = HttpRefundGateway(
            "http://pay", transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"ok")),
        )
        with pytest.raises(CollaboratorFailure):
            await gw.issue_refund(Decimal("5.00"), "cash", "RET-3")
