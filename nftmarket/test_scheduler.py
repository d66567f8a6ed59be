"""
Test suite for the periodic rental sync sweep.

Run: pytest nftmarket/test_scheduler.py -v
"""

import threading

import pytest

from conftest import ALICE, BOB, CONTRACT, NOW, PLAIN_CONTRACT
from nftmarket.errors import ErrorCode
from nftmarket.scheduler import RentalSyncScheduler


@pytest.fixture
def populated(engine, chain):
    chain.mint(CONTRACT, 1, ALICE)
    chain.mint(CONTRACT, 2, ALICE)
    chain.mint(PLAIN_CONTRACT, 1, ALICE, rentable=False)
    for contract, token in ((CONTRACT, 1), (CONTRACT, 2), (PLAIN_CONTRACT, 1)):
        engine.verify(contract, token)
    chain.set_user(CONTRACT, 1, BOB, NOW + 3600)
    chain.calls.clear()
    return engine


class TestRunOnce:
    def test_sweep_syncs_rentable_assets(self, populated):
        scheduler = RentalSyncScheduler(populated, interval_seconds=60)
        report = scheduler.run_once()

        assert report.total == 3
        assert report.skipped == 1
        assert report.synced == 2
        assert report.active == 1
        assert report.failures == []
        assert scheduler.last_report is report

        rented = populated.assets.find({"rental.is_rented": True})
        assert [a.token_id for a in rented] == ["1"]

    def test_known_non_rentable_contract_is_skipped(self, populated, chain):
        RentalSyncScheduler(populated).run_once()
        assert chain.calls.count("user_of") == 2

    def test_one_failure_does_not_abort_sweep(self, populated, chain):
        chain.owners.pop((CONTRACT, 1))
        report = RentalSyncScheduler(populated).run_once()

        assert report.synced == 1
        assert len(report.failures) == 1
        failure = report.failures[0]
        assert failure.identifier == f"{CONTRACT}:1"
        assert failure.code == ErrorCode.NOT_FOUND.value

    def test_transport_failure_is_recorded(self, populated, chain, unreachable):
        chain.fail["user_of"] = unreachable
        report = RentalSyncScheduler(populated).run_once()
        assert report.synced == 0
        assert {f.code for f in report.failures} == {ErrorCode.EXTERNAL_SERVICE_ERROR.value}

    @pytest.mark.parametrize("workers", [1, 3])
    def test_unexpected_exception_is_recorded(self, populated, chain, workers):
        chain.fail["user_of"] = RuntimeError("boom")
        report = RentalSyncScheduler(populated, workers=workers).run_once()

        assert report.synced == 0
        assert len(report.failures) == 2
        assert {f.code for f in report.failures} == {None}
        assert {f.error for f in report.failures} == {"RuntimeError: boom"}

    def test_worker_pool_gives_same_result(self, populated):
        report = RentalSyncScheduler(populated, workers=3).run_once()
        assert report.synced == 2
        assert report.active == 1

    def test_workers_must_be_positive(self, engine):
        with pytest.raises(ValueError):
            RentalSyncScheduler(engine, workers=0)


class TestLifecycle:
    def test_start_runs_a_sweep_and_stop_joins(self, populated):
        scheduler = RentalSyncScheduler(populated, interval_seconds=3600)
        swept = threading.Event()
        real_run_once = scheduler.run_once

        def run_once():
            report = real_run_once()
            swept.set()
            return report

        scheduler.run_once = run_once
        scheduler.start()
        try:
            assert swept.wait(5), "scheduler never ran a sweep"
            assert scheduler.running is True
        finally:
            scheduler.stop()
        assert scheduler.running is False
        assert scheduler.last_report.synced == 2

    def test_crashed_sweep_does_not_kill_the_thread(self, populated):
        scheduler = RentalSyncScheduler(populated, interval_seconds=0.01)
        calls = []
        swept = threading.Event()
        real_run_once = scheduler.run_once

        def run_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("store exploded")
            report = real_run_once()
            swept.set()
            return report

        scheduler.run_once = run_once
        scheduler.start()
        try:
            assert swept.wait(5), "scheduler stopped after a crashed sweep"
            assert scheduler.running is True
        finally:
            scheduler.stop()
        assert len(calls) >= 2

    def test_stopped_scheduler_cancels_pending_assets(self, populated, chain):
        scheduler = RentalSyncScheduler(populated)
        scheduler.stop()
        report = scheduler.run_once()
        assert report.cancelled is True
        assert report.synced == 0
        assert chain.calls == []
