"""
Tests for datamarket/api.py

Route tests drive EngineAPI._route_request directly under trio; the
end-to-end tests start the server and speak HTTP to it.

Run with: pytest tests/test_api.py -v --timeout=120
"""

import json
import socket
from typing import Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import trio

from datamarket.api import EngineAPI, Request, Response
from datamarket.errors import DatasetUnresolvable, Unavailable
from datamarket.money import to_units

from conftest import BUYER, DAY, NOW, OTHER, SELLER


def make_request(method: str, path: str, query: Optional[dict] = None, body: Optional[dict] = None) -> Request:
    return Request(
        method=method,
        path=path,
        query={k: [str(v)] for k, v in (query or {}).items()},
        headers={},
        body=json.dumps(body).encode() if body is not None else b"",
    )


def payload(response: Response) -> dict:
    return json.loads(response.body)


@pytest.fixture
def api(engine, clock):
    return EngineAPI(engine, host="127.0.0.1", port=0, clock=clock)


async def _seed_purchase(ledger, engine, session, price="10"):
    await ledger.register_dataset(SELLER, "QmData", "QmMeta", to_units(price), "nlp")
    return await engine.purchase_dataset(session, 0)


# ============================================================================
# BASICS
# ============================================================================

class TestBasics:
    """Test root, health, quote and metrics endpoints."""

    @pytest.mark.trio
    async def test_root(self, api):
        response = await api._route_request(make_request("GET", "/"))
        assert response.status == 200
        data = payload(response)
        assert data["name"] == "datamarket"
        assert "POST /bounties" in data["endpoints"]

    @pytest.mark.trio
    async def test_unknown_route(self, api):
        response = await api._route_request(make_request("GET", "/nope"))
        assert response.status == 404

    @pytest.mark.trio
    async def test_health(self, api):
        response = await api._route_request(make_request("GET", "/health"))
        assert response.status == 200
        assert payload(response)["status"] == "healthy"
        assert payload(response)["block_number"] == 0

    @pytest.mark.trio
    async def test_health_when_ledger_down(self, api, ledger):
        ledger.unavailable.add("get_block_number")
        response = await api._route_request(make_request("GET", "/health"))
        assert response.status == 503
        assert payload(response)["status"] == "unhealthy"

    @pytest.mark.trio
    async def test_quote(self, api):
        response = await api._route_request(make_request("GET", "/quote", {"price": "100"}))
        assert response.status == 200
        assert payload(response)["total"] == "102.5000"

    @pytest.mark.trio
    @pytest.mark.parametrize("query", [{}, {"price": "-5"}, {"price": "abc"}, {"price": "1e30"}])
    async def test_bad_quote(self, api, query):
        response = await api._route_request(make_request("GET", "/quote", query))
        assert response.status == 400
        assert "error" in payload(response)

    @pytest.mark.trio
    async def test_metrics(self, api, engine, buyer):
        await engine.reconcile_purchases(buyer)
        response = await api._route_request(make_request("GET", "/metrics"))
        assert response.status == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        assert b"datamarket_reconciliations_total 1" in response.body


# ============================================================================
# PURCHASES & ANALYTICS
# ============================================================================

class TestAccountRoutes:
    """Test account-scoped endpoints."""

    @pytest.mark.trio
    async def test_purchases(self, api, ledger, engine, buyer):
        record = await _seed_purchase(ledger, engine, buyer)
        response = await api._route_request(make_request("GET", f"/accounts/{BUYER}/purchases"))
        assert response.status == 200
        data = payload(response)
        assert data["count"] == 1
        assert data["purchases"][0]["purchase"]["transactionId"] == record.transaction_id
        assert data["purchases"][0]["dataset"]["category"] == "nlp"

    @pytest.mark.trio
    async def test_unresolvable_purchase(self, api, engine):
        engine.reconcile_purchases = AsyncMock(side_effect=DatasetUnresolvable(7, "not registered"))
        response = await api._route_request(make_request("GET", f"/accounts/{BUYER}/purchases"))
        assert response.status == 502

    @pytest.mark.trio
    async def test_clear_purchases(self, api, ledger, engine, buyer):
        await _seed_purchase(ledger, engine, buyer)
        response = await api._route_request(make_request("DELETE", f"/accounts/{BUYER}/purchases"))
        assert payload(response)["removed"] == 1

    @pytest.mark.trio
    async def test_trend(self, api, ledger, engine, buyer):
        await _seed_purchase(ledger, engine, buyer)
        response = await api._route_request(
            make_request("GET", f"/accounts/{BUYER}/revenue/trend", {"days": 7})
        )
        data = payload(response)
        assert data["days"] == 7
        assert data["trend"] == [{"date": "2023-11-14", "revenue": "10"}]

    @pytest.mark.trio
    async def test_trend_rejects_bad_days(self, api):
        for days in ("0", "week"):
            response = await api._route_request(
                make_request("GET", f"/accounts/{BUYER}/revenue/trend", {"days": days})
            )
            assert response.status == 400

    @pytest.mark.trio
    async def test_analytics(self, api, ledger, engine, buyer):
        await _seed_purchase(ledger, engine, buyer)
        response = await api._route_request(make_request("GET", f"/accounts/{BUYER}/revenue/analytics"))
        data = payload(response)
        assert data["days"] == 30
        assert data["periodRevenue"] == "10"
        assert data["growthRatePercent"] == "100.0"
        assert data["trend"] == "up"

    @pytest.mark.trio
    async def test_dashboard(self, api, engine, seller):
        await engine.register_dataset(seller, "Qm1", "QmM1", "5", "nlp")
        await engine.register_dataset(seller, "Qm2", "QmM2", "7", "vision")
        response = await api._route_request(make_request("GET", f"/accounts/{SELLER}/dashboard"))
        data = payload(response)
        assert data["totalEarnings"] == "12"
        assert data["datasetsListed"] == 2
        assert [c["category"] for c in data["categories"]] == ["vision", "nlp"]

    @pytest.mark.trio
    async def test_datasets(self, api, engine, seller):
        await engine.register_dataset(seller, "Qm1", "QmM1", "5", "nlp")
        await engine.register_dataset(seller, "Qm2", "QmM2", "7", "vision")
        response = await api._route_request(make_request("GET", "/datasets", {"category": "vision"}))
        assert payload(response)["count"] == 1


# ============================================================================
# BOUNTIES
# ============================================================================

class TestBountyRoutes:
    """Test the bounty lifecycle over HTTP routes."""

    BOUNTY = {
        "creator": SELLER,
        "title": "Labelled tweets",
        "description": "10k rows",
        "metadataHash": "QmMeta",
        "category": "nlp",
        "deadline": NOW + 7 * DAY,
        "reward": "40",
    }

    @pytest.mark.trio
    async def test_lifecycle(self, api):
        created = await api._route_request(make_request("POST", "/bounties", body=self.BOUNTY))
        assert created.status == 201
        bounty_id = payload(created)["id"]

        submitted = await api._route_request(make_request(
            "POST", f"/bounties/{bounty_id}/submissions",
            body={"submitter": BUYER, "contentHash": "QmSub", "description": "rows"},
        ))
        assert submitted.status == 201

        approved = await api._route_request(make_request(
            "POST", f"/bounties/{bounty_id}/approve", body={"caller": SELLER, "submissionIndex": 0},
        ))
        assert approved.status == 200
        data = payload(approved)
        assert data["fulfiller"] == BUYER
        assert data["fee"]["netReward"] == "39.0000"
        assert data["bounty"]["status"] == "fulfilled"

        listed = await api._route_request(make_request("GET", "/bounties", {"status": "fulfilled"}))
        assert payload(listed)["count"] == 1

    @pytest.mark.trio
    async def test_rejected_maps_to_conflict(self, api):
        created = await api._route_request(make_request("POST", "/bounties", body=self.BOUNTY))
        bounty_id = payload(created)["id"]
        response = await api._route_request(make_request(
            "POST", f"/bounties/{bounty_id}/cancel", body={"caller": OTHER},
        ))
        assert response.status == 409
        assert payload(response)["reason"] == "Only creator can cancel"

    @pytest.mark.trio
    async def test_cancel(self, api):
        created = await api._route_request(make_request("POST", "/bounties", body=self.BOUNTY))
        bounty_id = payload(created)["id"]
        response = await api._route_request(make_request(
            "POST", f"/bounties/{bounty_id}/cancel", body={"caller": SELLER},
        ))
        assert response.status == 200
        assert payload(response)["refunded"] == "40"

    @pytest.mark.trio
    async def test_outcome_unknown_reported(self, api, engine):
        engine.cancel_bounty = AsyncMock(
            side_effect=Unavailable("receipt timed out", "cancel_bounty", outcome_unknown=True)
        )
        response = await api._route_request(make_request(
            "POST", "/bounties/0/cancel", body={"caller": SELLER},
        ))
        assert response.status == 503
        assert payload(response)["outcome_unknown"] is True

    @pytest.mark.trio
    async def test_missing_fields(self, api):
        response = await api._route_request(make_request("POST", "/bounties", body={"creator": SELLER}))
        assert response.status == 400
        assert "title" in payload(response)["error"]

    @pytest.mark.trio
    async def test_invalid_json(self, api):
        request = make_request("POST", "/bounties")
        request.body = b"{not json"
        response = await api._route_request(request)
        assert response.status == 400

    @pytest.mark.trio
    async def test_non_numeric_bounty_id(self, api):
        response = await api._route_request(make_request(
            "POST", "/bounties/abc/cancel", body={"caller": SELLER},
        ))
        assert response.status == 400

    @pytest.mark.trio
    async def test_invalid_sort(self, api):
        response = await api._route_request(make_request("GET", "/bounties", {"sort": "oldest"}))
        assert response.status == 400

    @pytest.mark.trio
    async def test_unexpected_error(self, api, engine):
        engine.list_bounties = AsyncMock(side_effect=RuntimeError("boom"))
        response = await api._route_request(make_request("GET", "/bounties"))
        assert response.status == 500
        assert payload(response)["error"] == "Internal Server Error"


# ============================================================================
# END TO END
# ============================================================================

def get_free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def http_request(port: int, method: str, path: str, body: Optional[bytes] = None) -> Tuple[int, bytes]:
    """Make an HTTP request and return (status, body)."""
    lines = [f"{method} {path} HTTP/1.1", f"Host: 127.0.0.1:{port}"]
    if body:
        lines.append(f"Content-Length: {len(body)}")
        lines.append("Content-Type: application/json")
    request = "\r\n".join(lines).encode() + b"\r\n\r\n" + (body or b"")

    stream = await trio.open_tcp_stream("127.0.0.1", port)
    try:
        await stream.send_all(request)
        data = b""
        while True:
            chunk = await stream.receive_some(4096)
            if not chunk:
                break
            data += chunk
    finally:
        await stream.aclose()

    header_end = data.index(b"\r\n\r\n")
    status = int(data[:header_end].split(b" ", 2)[1])
    return status, data[header_end + 4:]


class TestAPIEndToEnd:
    """End-to-end tests with actual HTTP requests."""

    @pytest.mark.timeout(30)
    def test_quote_e2e(self, engine):
        """Test /quote over a real socket."""

        async def run_test():
            port = get_free_port()
            api = EngineAPI(engine, host="127.0.0.1", port=port)

            async with trio.open_nursery() as nursery:
                nursery.start_soon(api.start)
                await trio.sleep(0.2)

                status, body = await http_request(port, "GET", "/quote?price=40")
                assert status == 200
                assert json.loads(body)["platformFee"] == "1.0000"

                nursery.cancel_scope.cancel()

        trio.run(run_test)

    @pytest.mark.timeout(30)
    def test_create_bounty_e2e(self, engine, clock):
        """Test POST /bounties with a JSON body."""

        async def run_test():
            port = get_free_port()
            api = EngineAPI(engine, host="127.0.0.1", port=port, clock=clock)
            body = json.dumps(TestBountyRoutes.BOUNTY).encode()

            async with trio.open_nursery() as nursery:
                nursery.start_soon(api.start)
                await trio.sleep(0.2)

                status, response = await http_request(port, "POST", "/bounties", body)
                assert status == 201
                assert json.loads(response)["title"] == "Labelled tweets"

                status, _ = await http_request(port, "GET", "/missing")
                assert status == 404

                nursery.cancel_scope.cancel()

        trio.run(run_test)
