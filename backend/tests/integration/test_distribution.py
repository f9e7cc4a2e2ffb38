"""Integration tests for computations and distribution generation"""
import asyncio
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from dividend_ledger.models import (
    Dividend,
    DividendAuditEntry,
    DividendComputation,
    DividendComputationOutput,
    DividendRound,
    DividendStatus,
)
from dividend_ledger.services import distribution
from dividend_ledger.services.computation import delete_computation, get_computation, run_computation
from dividend_ledger.services.distribution import generate_distribution
from dividend_ledger.services.errors import AllocationInputError, ComputationInUseError, NotFoundError
from dividend_ledger.services.reports import ReportView, export_report


async def count(db, model, *criteria):
    query = select(func.count()).select_from(model)
    for criterion in criteria:
        query = query.where(criterion)
    return (await db.execute(query)).scalar()


async def dividends_by_recipient(db, round_id):
    result = await db.execute(
        select(Dividend).where(Dividend.dividend_round_id == round_id).order_by(Dividend.id)
    )
    return {d.recipient_id: d for d in result.scalars().all()}


class TestRunComputation:
    """Tests for persisting computations"""

    @pytest.mark.asyncio
    async def test_outputs_match_allocation(self, db_session, small_cap_table):
        company = small_cap_table["company"]

        computation = await run_computation(db_session, company.id, 100_000, date.today(), actor_id="user:1")
        computation = await get_computation(db_session, computation.id)

        totals = {}
        for output in computation.outputs:
            totals[output.recipient_id] = totals.get(output.recipient_id, 0) + output.total_amount_in_cents
        assert totals == {
            small_cap_table["alice"].id: 28_000,
            small_cap_table["bob"].id: 54_000,
            small_cap_table["carol"].id: 18_000,
        }
        assert computation.distributed_amount_in_cents == 100_000
        assert computation.created_by == "user:1"

        alice_line = next(o for o in computation.outputs if o.recipient_id == small_cap_table["alice"].id)
        assert alice_line.preferred_dividend_amount_in_cents == 10_000
        assert alice_line.dividend_amount_in_cents == 18_000

    @pytest.mark.asyncio
    async def test_audit_entry_written(self, db_session, small_cap_table):
        computation = await run_computation(
            db_session, small_cap_table["company"].id, 100_000, date.today(), actor_id="user:1"
        )

        entries = (await db_session.execute(
            select(DividendAuditEntry).where(
                DividendAuditEntry.entity_type == "dividend_computation",
                DividendAuditEntry.entity_id == computation.id,
            )
        )).scalars().all()
        assert [e.action for e in entries] == ["compute"]
        assert entries[0].new_state["distributed_amount_in_cents"] == 100_000

    @pytest.mark.asyncio
    async def test_unknown_company(self, db_session):
        with pytest.raises(NotFoundError):
            await run_computation(db_session, 999, 100_000, date.today(), actor_id="user:1")

    @pytest.mark.asyncio
    async def test_empty_ledger_has_no_outputs(self, db_session, factory):
        company = await factory.company()
        await db_session.commit()

        computation = await run_computation(db_session, company.id, 100_000, date.today(), actor_id="user:1")

        assert await count(
            db_session, DividendComputationOutput,
            DividendComputationOutput.dividend_computation_id == computation.id,
        ) == 0

    @pytest.mark.asyncio
    async def test_invalid_pool_writes_nothing(self, db_session, small_cap_table):
        with pytest.raises(AllocationInputError):
            await run_computation(db_session, small_cap_table["company"].id, 0, date.today(), actor_id="user:1")

        assert await count(db_session, DividendComputation) == 0

    @pytest.mark.asyncio
    async def test_zero_lines_not_stored(self, db_session, factory):
        """A 1 cent pool over two equal holders leaves one line at zero"""
        company = await factory.company()
        common = await factory.share_class(company, "Common")
        first = await factory.recipient(company, "First")
        second = await factory.recipient(company, "Second")
        await factory.holding(first, common, 100)
        await factory.holding(second, common, 100)
        await db_session.commit()

        computation = await run_computation(db_session, company.id, 1, date.today(), actor_id="user:1")

        assert await count(
            db_session, DividendComputationOutput,
            DividendComputationOutput.dividend_computation_id == computation.id,
        ) == 1

    @pytest.mark.asyncio
    async def test_delete_unused_computation(self, db_session, small_cap_table):
        computation = await run_computation(
            db_session, small_cap_table["company"].id, 100_000, date.today(), actor_id="user:1"
        )

        await delete_computation(db_session, computation.id, actor_id="user:1")

        assert await count(db_session, DividendComputation) == 0
        assert await count(db_session, DividendComputationOutput) == 0

    @pytest.mark.asyncio
    async def test_cannot_delete_generated_computation(self, db_session, small_cap_table):
        computation = await run_computation(
            db_session, small_cap_table["company"].id, 100_000, date.today(), actor_id="user:1"
        )
        await generate_distribution(db_session, computation.id, actor_id="user:1")

        with pytest.raises(ComputationInUseError):
            await delete_computation(db_session, computation.id, actor_id="user:1")


class TestGenerateDistribution:
    """Tests for materializing a computation into a round"""

    @pytest_asyncio.fixture
    async def computation(self, db_session, small_cap_table):
        return await run_computation(
            db_session, small_cap_table["company"].id, 100_000, date.today(), actor_id="user:1"
        )

    @pytest.mark.asyncio
    async def test_round_aggregates(self, db_session, small_cap_table, computation):
        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")

        assert dividend_round.dividend_computation_id == computation.id
        assert dividend_round.total_amount_in_cents == 100_000
        assert dividend_round.number_of_shareholders == 3
        assert dividend_round.number_of_shares == 4_000
        assert dividend_round.ready_for_payment is False
        assert dividend_round.issued_at == date.today()

    @pytest.mark.asyncio
    async def test_one_dividend_per_recipient(self, db_session, small_cap_table, computation):
        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")

        dividends = await dividends_by_recipient(db_session, dividend_round.id)
        alice, bob, carol = (small_cap_table[k] for k in ("alice", "bob", "carol"))
        assert {k: d.total_amount_in_cents for k, d in dividends.items()} == {
            alice.id: 28_000,
            bob.id: 54_000,
            carol.id: 18_000,
        }
        assert sum(d.total_amount_in_cents for d in dividends.values()) == dividend_round.total_amount_in_cents
        assert dividends[alice.id].number_of_shares == 1_000
        assert dividends[carol.id].number_of_shares is None
        assert dividends[carol.id].convertible_security_id is not None
        assert {d.status for d in dividends.values()} == {DividendStatus.ISSUED.value}

    @pytest.mark.asyncio
    async def test_pending_signup_status(self, db_session, factory):
        company = await factory.company()
        common = await factory.share_class(company, "Common")
        newcomer = await factory.recipient(company, "Newcomer", onboarded=False)
        await factory.holding(newcomer, common, 100)
        await db_session.commit()
        computation = await run_computation(db_session, company.id, 50_000, date.today(), actor_id="user:1")

        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")

        dividends = await dividends_by_recipient(db_session, dividend_round.id)
        assert dividends[newcomer.id].status == DividendStatus.PENDING_SIGNUP.value

    @pytest.mark.asyncio
    async def test_regenerating_returns_same_rows(self, db_session, small_cap_table, computation):
        first = await generate_distribution(db_session, computation.id, actor_id="user:1")
        first_ids = {k: d.id for k, d in (await dividends_by_recipient(db_session, first.id)).items()}

        second = await generate_distribution(db_session, computation.id, actor_id="user:2")
        second_ids = {k: d.id for k, d in (await dividends_by_recipient(db_session, second.id)).items()}

        assert second.id == first.id
        assert second_ids == first_ids
        assert await count(db_session, DividendRound) == 1
        assert await count(db_session, Dividend) == 3

    @pytest.mark.asyncio
    async def test_generation_is_audited_once(self, db_session, small_cap_table, computation):
        await generate_distribution(db_session, computation.id, actor_id="user:1")
        await generate_distribution(db_session, computation.id, actor_id="user:1")

        assert await count(
            db_session, DividendAuditEntry,
            DividendAuditEntry.action == "generate",
            DividendAuditEntry.entity_type == "dividend",
        ) == 3
        assert await count(
            db_session, DividendAuditEntry,
            DividendAuditEntry.action == "generate",
            DividendAuditEntry.entity_type == "dividend_round",
        ) == 1

    @pytest.mark.asyncio
    async def test_lost_insert_race_reuses_existing_rows(self, db_session, small_cap_table, computation, monkeypatch):
        """A writer that misses the existing rows hits the unique constraint and re-reads"""
        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")
        expected = {k: d.id for k, d in (await dividends_by_recipient(db_session, dividend_round.id)).items()}

        real_find_round = distribution._find_round
        real_find_dividend = distribution._find_dividend
        missed = set()

        async def stale_find_round(db, computation_id):
            if "round" not in missed:
                missed.add("round")
                return None
            return await real_find_round(db, computation_id)

        async def stale_find_dividend(db, recipient_id, round_id):
            if recipient_id not in missed:
                missed.add(recipient_id)
                return None
            return await real_find_dividend(db, recipient_id, round_id)

        monkeypatch.setattr(distribution, "_find_round", stale_find_round)
        monkeypatch.setattr(distribution, "_find_dividend", stale_find_dividend)

        again = await generate_distribution(db_session, computation.id, actor_id="user:2")

        assert again.id == dividend_round.id
        monkeypatch.undo()
        actual = {k: d.id for k, d in (await dividends_by_recipient(db_session, again.id)).items()}
        assert actual == expected
        assert await count(db_session, Dividend) == 3

    @pytest.mark.asyncio
    async def test_concurrent_generation(self, session_factory, db_session, small_cap_table, computation):
        async def generate():
            async with session_factory() as session:
                dividend_round = await generate_distribution(session, computation.id, actor_id="worker")
                return dividend_round.id

        round_ids = await asyncio.gather(generate(), generate())

        assert round_ids[0] == round_ids[1]
        assert await count(db_session, DividendRound) == 1
        assert await count(db_session, Dividend) == 3

    @pytest.mark.asyncio
    async def test_concurrent_find_or_create_keeps_first_write(
        self, session_factory, db_session, factory, small_cap_table, computation
    ):
        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")
        company = small_cap_table["company"]
        latecomer = await factory.recipient(company, "Latecomer")
        await db_session.commit()
        round_id, recipient_id, company_id = dividend_round.id, latecomer.id, company.id

        async def create(amount):
            async with session_factory() as session:
                dividend, created = await distribution.find_or_create_dividend(
                    session,
                    recipient_id,
                    round_id,
                    {
                        "company_id": company_id,
                        "total_amount_in_cents": amount,
                        "status": DividendStatus.ISSUED.value,
                    },
                )
                await session.commit()
                return dividend.id, dividend.total_amount_in_cents, created

        results = await asyncio.gather(*(create(1_000 * n) for n in range(1, 6)))

        assert [created for _, _, created in results].count(True) == 1
        winner_id, winner_amount, _ = next(r for r in results if r[2])
        assert {dividend_id for dividend_id, _, _ in results} == {winner_id}
        assert {amount for _, amount, _ in results} == {winner_amount}
        rows = (await db_session.execute(
            select(Dividend).where(Dividend.recipient_id == recipient_id)
        )).scalars().all()
        assert len(rows) == 1
        assert rows[0].total_amount_in_cents == winner_amount

    @pytest.mark.asyncio
    async def test_unknown_computation(self, db_session):
        with pytest.raises(NotFoundError):
            await generate_distribution(db_session, 404, actor_id="user:1")


class TestReportExport:
    @pytest.mark.asyncio
    async def test_views_reconcile(self, db_session, small_cap_table):
        computation = await run_computation(
            db_session, small_cap_table["company"].id, 100_000, date.today(), actor_id="user:1"
        )
        dividend_round = await generate_distribution(db_session, computation.id, actor_id="user:1")

        per_class = await export_report(db_session, ReportView.PER_CLASS, computation.id)
        per_investor = await export_report(db_session, ReportView.PER_INVESTOR, computation.id)
        final = await export_report(db_session, ReportView.FINAL, dividend_round.id)

        assert "Alice,Series A,1000,10,1,180.00,100.00,280.00" in per_class
        assert "Carol Ventures,SAFE-1,1000,,,180.00,0.00,180.00" in per_class
        assert f"Bob,{small_cap_table['bob'].id},3000,540.00" in per_investor
        assert "Carol Ventures,,1000,180.00" in per_investor
        assert f"Carol Ventures,{small_cap_table['carol'].id},1000,180.00" in final

    @pytest.mark.asyncio
    async def test_unknown_round(self, db_session):
        with pytest.raises(NotFoundError):
            await export_report(db_session, ReportView.FINAL, 12)
