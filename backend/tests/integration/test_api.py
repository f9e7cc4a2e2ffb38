"""Integration tests for Dividend Ledger API endpoints"""
from datetime import date
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient

from dividend_ledger.api.v1.dividends import get_lifecycle
from dividend_ledger.main import app
from dividend_ledger.services.payment_lifecycle import PaymentLifecycleCoordinator
from dividend_ledger.services.payment_provider import TransferResult


def computation_payload(company_id, amount=100_000, **overrides):
    payload = {
        "company_id": company_id,
        "total_amount_in_cents": amount,
        "dividends_issuance_date": date.today().isoformat(),
        "actor_id": "user:admin",
    }
    payload.update(overrides)
    return payload


@pytest_asyncio.fixture
async def computation(client: AsyncClient, small_cap_table):
    response = await client.post(
        "/api/v1/computations", json=computation_payload(small_cap_table["company"].id)
    )
    assert response.status_code == 200
    return response.json()


@pytest_asyncio.fixture
async def dividend_round(client: AsyncClient, computation):
    response = await client.post(
        "/api/v1/rounds", json={"computation_id": computation["id"], "actor_id": "user:admin"}
    )
    assert response.status_code == 200
    return response.json()


class TestHealthEndpoint:
    """Tests for health check endpoint"""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test that health endpoint returns healthy status"""
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["currency"] == "USD"


class TestComputationEndpoints:
    """Tests for computation endpoints"""

    @pytest.mark.asyncio
    async def test_create_computation(self, computation, small_cap_table):
        assert computation["total_amount_in_cents"] == 100_000
        assert computation["distributed_amount_in_cents"] == 100_000
        assert computation["created_by"] == "user:admin"
        names = {o["recipient_name"] for o in computation["outputs"]}
        assert names == {"Alice", "Bob", "Carol Ventures"}

    @pytest.mark.asyncio
    async def test_preview_stores_nothing(self, client: AsyncClient, small_cap_table):
        response = await client.post(
            "/api/v1/computations/preview", json=computation_payload(small_cap_table["company"].id)
        )
        assert response.status_code == 200
        data = response.json()
        assert data["distributed_amount_cents"] == 100_000
        assert data["pool_exhausted"] is False
        assert len(data["lines"]) == 3

        response = await client.get("/api/v1/computations/1")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_non_positive_pool_rejected(self, client: AsyncClient, small_cap_table):
        response = await client.post(
            "/api/v1/computations", json=computation_payload(small_cap_table["company"].id, amount=0)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_company(self, client: AsyncClient):
        response = await client.post("/api/v1/computations", json=computation_payload(999))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_computation(self, client: AsyncClient, computation):
        response = await client.get(f"/api/v1/computations/{computation['id']}")
        assert response.status_code == 200
        assert response.json()["outputs"] == computation["outputs"]

    @pytest.mark.asyncio
    async def test_export_per_class(self, client: AsyncClient, computation):
        response = await client.get(f"/api/v1/computations/{computation['id']}/export?view=per_class")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().split("\n")
        assert lines[0].startswith("Investor,Share class,Number of shares")
        assert len(lines) == 4

    @pytest.mark.asyncio
    async def test_export_final_view_not_allowed(self, client: AsyncClient, computation):
        response = await client.get(f"/api/v1/computations/{computation['id']}/export?view=final")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_delete_computation(self, client: AsyncClient, computation):
        response = await client.delete(f"/api/v1/computations/{computation['id']}?actor_id=user:admin")
        assert response.status_code == 200
        assert response.json() == {"deleted": True, "computation_id": computation["id"]}

        response = await client.get(f"/api/v1/computations/{computation['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_generated_computation_conflicts(self, client: AsyncClient, computation, dividend_round):
        response = await client.delete(f"/api/v1/computations/{computation['id']}?actor_id=user:admin")
        assert response.status_code == 409


class TestRoundEndpoints:
    """Tests for dividend round endpoints"""

    @pytest.mark.asyncio
    async def test_generate_round(self, dividend_round, computation):
        assert dividend_round["dividend_computation_id"] == computation["id"]
        assert dividend_round["total_amount_in_cents"] == 100_000
        assert dividend_round["number_of_shareholders"] == 3
        assert dividend_round["ready_for_payment"] is False

    @pytest.mark.asyncio
    async def test_generate_round_is_idempotent(self, client: AsyncClient, computation, dividend_round):
        response = await client.post(
            "/api/v1/rounds", json={"computation_id": computation["id"], "actor_id": "user:admin"}
        )
        assert response.status_code == 200
        assert response.json()["id"] == dividend_round["id"]

    @pytest.mark.asyncio
    async def test_generate_unknown_computation(self, client: AsyncClient):
        response = await client.post("/api/v1/rounds", json={"computation_id": 77, "actor_id": "user:admin"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_dividends(self, client: AsyncClient, dividend_round):
        response = await client.get(f"/api/v1/rounds/{dividend_round['id']}/dividends")
        assert response.status_code == 200
        data = response.json()
        assert sorted(d["total_amount_in_cents"] for d in data) == [18_000, 28_000, 54_000]
        assert {d["status"] for d in data} == {"Issued"}

    @pytest.mark.asyncio
    async def test_get_round_not_found(self, client: AsyncClient):
        response = await client.get("/api/v1/rounds/999")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_payment_status(self, client: AsyncClient, dividend_round):
        response = await client.get(f"/api/v1/rounds/{dividend_round['id']}/payment-status")
        assert response.status_code == 200
        data = response.json()
        assert data["counts"]["Issued"] == 3
        assert data["paid_amount_in_cents"] == 0
        assert data["amounts_in_cents"]["Issued"] == 100_000

    @pytest.mark.asyncio
    async def test_export_final(self, client: AsyncClient, dividend_round):
        response = await client.get(f"/api/v1/rounds/{dividend_round['id']}/export")
        assert response.status_code == 200
        lines = response.text.strip().split("\n")
        assert lines[0] == "Investor,Investor ID,Number of shares,Amount (USD)"
        assert len(lines) == 4


class TestDividendEndpoints:
    """Tests for dividend lifecycle endpoints"""

    @pytest.fixture
    def provider(self):
        mock = AsyncMock()
        mock.name = "test-provider"
        mock.initiate_transfer.return_value = TransferResult(transfer_id="tr_api", status="processing")
        mock.get_delivery_estimate.return_value = None
        return mock

    @pytest.fixture
    def lifecycle(self, db_session, provider):
        app.dependency_overrides[get_lifecycle] = lambda: PaymentLifecycleCoordinator(
            db_session, provider=provider, notifier=AsyncMock()
        )
        yield
        app.dependency_overrides.pop(get_lifecycle, None)

    async def _dividends(self, client, dividend_round):
        response = await client.get(f"/api/v1/rounds/{dividend_round['id']}/dividends")
        return {d["recipient_id"]: d for d in response.json()}

    @pytest.mark.asyncio
    async def test_retain_dividend(self, client: AsyncClient, small_cap_table, dividend_round, lifecycle):
        dividend = (await self._dividends(client, dividend_round))[small_cap_table["bob"].id]

        response = await client.post(
            f"/api/v1/dividends/{dividend['id']}/retain",
            json={"actor_id": "user:admin", "reason": "ofac_sanctioned_country"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Retained"

        response = await client.post(
            f"/api/v1/dividends/{dividend['id']}/retain",
            json={"actor_id": "user:admin", "reason": "below_minimum_payment_threshold"},
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_retain_unknown_reason(self, client: AsyncClient, dividend_round, lifecycle):
        response = await client.post(
            "/api/v1/dividends/1/retain", json={"actor_id": "user:admin", "reason": "because"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_sign_release(self, client: AsyncClient, small_cap_table, dividend_round, lifecycle):
        dividend = (await self._dividends(client, dividend_round))[small_cap_table["alice"].id]

        response = await client.post(
            f"/api/v1/dividends/{dividend['id']}/sign-release", json={"actor_id": "user:alice"}
        )
        assert response.status_code == 200
        assert response.json()["signed_release_at"] is not None

    @pytest.mark.asyncio
    async def test_complete_signup_unknown_recipient(self, client: AsyncClient, lifecycle):
        response = await client.post(
            "/api/v1/recipients/999/complete-signup", json={"actor_id": "user:admin"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_trigger_payment(
        self, client: AsyncClient, db_session, small_cap_table, dividend_round, lifecycle
    ):
        bob_id = small_cap_table["bob"].id
        response = await client.post(f"/api/v1/recipients/{bob_id}/payments", json={"actor_id": "user:bob"})
        assert response.status_code == 200
        assert response.json() is None  # round not enabled yet

        await PaymentLifecycleCoordinator(db_session).enable_ready_rounds(today=date.today())

        response = await client.post(f"/api/v1/recipients/{bob_id}/payments", json={"actor_id": "user:bob"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "submitted"
        assert data["transfer_id"] == "tr_api"
        assert data["total_transaction_cents"] == 54_000
        assert len(data["dividend_ids"]) == 1
