"""Integration tests for the background expiry sweep."""

import asyncio

import pytest

from gatepass.application.documents import DocumentReleaser
from gatepass.application.expiry_sweep import ExpirySweeper, SweepReport
from gatepass.domain.errors import DependencyError, RequestExpiredError
from gatepass.domain.models import (
    DocumentBundle,
    ResidentDecision,
    TravelType,
    VisitMode,
    VisitStatus,
)

RESIDENT_REF = "res-thandi"


async def submit(engine, guest, documents):
    return await engine.submit_request(
        mode=VisitMode.QR,
        travel_type=TravelType.PEDESTRIAN,
        documents=documents,
        estate_reference="EST-001",
        unit_reference="U12",
        guest=guest,
    )


@pytest.fixture
def sweeper(visits, document_storage, clock) -> ExpirySweeper:
    return ExpirySweeper(visits, DocumentReleaser(document_storage, visits), clock=clock)


class TestExpirySweeper:
    """Tests for ExpirySweeper."""

    @pytest.mark.asyncio
    async def test_expires_stale_pending_and_releases_documents(
        self, engine, sweeper, visits, document_storage, guest, pedestrian_documents, clock
    ):
        """Test stale requests are rewritten and their documents deleted."""
        visit = await submit(engine, guest, pedestrian_documents)
        clock.advance(hours=24, seconds=1)

        report = await sweeper.sweep_once()

        stored = await visits.get(visit.id)
        assert report == SweepReport(expired=1, released=1)
        assert stored.status == VisitStatus.EXPIRED
        assert stored.decided_at is None
        assert stored.documents_released_at == clock.now
        document_storage.delete.assert_awaited_once_with(pedestrian_documents.identity_document_ref)

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, engine, sweeper, guest, pedestrian_documents, clock):
        await submit(engine, guest, pedestrian_documents)
        clock.advance(days=2)

        await sweeper.sweep_once()
        second = await sweeper.sweep_once()

        assert second == SweepReport(expired=0, released=0)

    @pytest.mark.asyncio
    async def test_decide_fails_the_same_before_and_after_sweep(
        self, engine, sweeper, credentials, guest, pedestrian_documents, clock
    ):
        """Test a stale request reports RequestExpired whether or not the sweep ran."""
        visit = await submit(engine, guest, pedestrian_documents)
        clock.advance(hours=25)

        with pytest.raises(RequestExpiredError):
            await engine.decide(visit.id, ResidentDecision.GRANTED, RESIDENT_REF)

        await sweeper.sweep_once()

        for _ in range(2):
            with pytest.raises(RequestExpiredError):
                await engine.decide(visit.id, ResidentDecision.GRANTED, RESIDENT_REF)
        assert await credentials.count_for_visit_request(visit.id) == 0

    @pytest.mark.asyncio
    async def test_never_touches_decided_or_fresh_requests(
        self, engine, sweeper, visits, guest, pedestrian_documents, clock
    ):
        """Test granted and in-window requests keep their status."""
        granted = await submit(engine, guest, pedestrian_documents)
        await engine.decide(granted.id, ResidentDecision.GRANTED, RESIDENT_REF)
        clock.advance(hours=23)
        fresh = await submit(engine, guest, pedestrian_documents)
        clock.advance(hours=2)

        report = await sweeper.sweep_once()

        assert report.expired == 0
        assert (await visits.get(granted.id)).status == VisitStatus.GRANTED
        assert (await visits.get(fresh.id)).status == VisitStatus.PENDING

    @pytest.mark.asyncio
    async def test_failed_release_is_retried(
        self, engine, sweeper, visits, document_storage, guest, pedestrian_documents
    ):
        """Test a decision whose release failed is released by a later sweep."""
        document_storage.delete.side_effect = DependencyError("storage offline")
        visit = await submit(engine, guest, pedestrian_documents)
        await engine.decide(visit.id, ResidentDecision.DENIED, RESIDENT_REF)

        assert (await sweeper.sweep_once()).released == 0

        document_storage.delete.side_effect = None
        document_storage.delete.return_value = True

        assert (await sweeper.sweep_once()).released == 1
        assert (await visits.get(visit.id)).documents_released_at is not None

    @pytest.mark.asyncio
    async def test_stuck_release_does_not_block_newer_requests(
        self, engine, visits, document_storage, guest, clock
    ):
        """Test the sweep pages past an older request whose release keeps failing."""
        failing = {"identity/old.bin", "identity/new.bin"}

        async def delete(ref):
            if ref in failing:
                raise DependencyError("storage offline")
            return True

        document_storage.delete.side_effect = delete
        older = await submit(engine, guest, DocumentBundle("identity/old.bin"))
        clock.advance(minutes=1)
        newer = await submit(engine, guest, DocumentBundle("identity/new.bin"))
        for visit in (older, newer):
            await engine.decide(visit.id, ResidentDecision.DENIED, RESIDENT_REF)

        failing.discard("identity/new.bin")
        sweeper = ExpirySweeper(
            visits,
            DocumentReleaser(document_storage, visits),
            batch_size=1,
            clock=clock,
        )

        report = await sweeper.sweep_once()

        assert report.released == 1
        assert (await visits.get(newer.id)).documents_released_at is not None
        assert (await visits.get(older.id)).documents_released_at is None

    @pytest.mark.asyncio
    async def test_run_loop_survives_errors_and_cancels(self, visits, document_storage):
        """Test the loop keeps going after a failed pass and stops on cancel."""
        sweeper = ExpirySweeper(visits, DocumentReleaser(document_storage, visits))
        calls = []

        async def flaky_sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("database hiccup")
            return SweepReport(expired=0, released=0)

        sweeper.sweep_once = flaky_sweep
        task = asyncio.create_task(sweeper.run(0.01))
        while len(calls) < 3:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(calls) >= 3
