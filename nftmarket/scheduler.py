"""
nftmarket/scheduler.py

Periodic rental sync sweep.

Every interval the scheduler walks all known assets (creation order) and runs
ReconciliationEngine.sync_rental on each one. workers=1 is a plain sequential
loop; workers>1 uses a bounded ThreadPoolExecutor. A failing asset is recorded in
the SweepReport and never aborts the sweep, whatever it raised.

stop() sets the stop event, which is also the cancel signal of every Deadline the
sweep hands to the engine, so in-flight ledger calls end early.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from nftmarket.config import IS_DEV, SYNC_INTERVAL_SECONDS, SYNC_WORKERS
from nftmarket.deadline import Deadline
from nftmarket.errors import MarketplaceError
from nftmarket.models import AssetRecord
from nftmarket.reconcile import ReconciliationEngine
from nftmarket.repositories import AssetRepository


class AssetFailure(BaseModel):
    asset_id: str
    identifier: str
    code: Optional[str] = None
    error: str


class SweepReport(BaseModel):
    started_at: float
    finished_at: Optional[float] = None
    total: int = 0
    synced: int = 0
    active: int = 0
    skipped: int = 0
    cancelled: bool = False
    failures: List[AssetFailure] = Field(default_factory=list)


class RentalSyncScheduler:
    def __init__(
        self,
        engine: ReconciliationEngine,
        assets: Optional[AssetRepository] = None,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
        workers: int = SYNC_WORKERS,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.engine = engine
        self.assets = assets or engine.assets
        self.interval_seconds = interval_seconds
        self.workers = workers
        self.last_report: Optional[SweepReport] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sweep_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _skip(self, asset: AssetRecord, non_rentable: Dict[str, bool]) -> bool:
        """Contracts already known to lack ERC-4907 have nothing to sync."""
        address = asset.contract_address
        if address not in non_rentable:
            contract = self.engine.contracts.find_by_address(address)
            non_rentable[address] = contract is not None and contract.supports_erc4907 is False
        return non_rentable[address]

    def _sync_one(self, asset: AssetRecord, report: SweepReport, lock: threading.Lock) -> None:
        if self._stop.is_set():
            with lock:
                report.cancelled = True
            return
        deadline = Deadline(timeout=self.engine.call_timeout, cancel_event=self._stop)
        try:
            result = self.engine.sync_rental(asset.contract_address, asset.token_id, deadline=deadline)
        except MarketplaceError as e:
            print(f"[SCHEDULER] Sync failed for {asset.identifier}: {e.message}")
            with lock:
                report.failures.append(AssetFailure(
                    asset_id=asset.id,
                    identifier=asset.identifier,
                    code=e.code.value if e.code else None,
                    error=e.message,
                ))
            return
        except Exception as e:
            print(f"[SCHEDULER] Unexpected error syncing {asset.identifier}: {type(e).__name__}: {e}")
            with lock:
                report.failures.append(AssetFailure(
                    asset_id=asset.id,
                    identifier=asset.identifier,
                    error=f"{type(e).__name__}: {e}",
                ))
            return

        with lock:
            if result.success:
                report.synced += 1
                if result.active:
                    report.active += 1
            else:
                report.failures.append(AssetFailure(
                    asset_id=asset.id,
                    identifier=asset.identifier,
                    code=result.code.value if result.code else None,
                    error=result.error or "sync failed",
                ))

    def run_once(self) -> SweepReport:
        """One full sweep. Concurrent callers are serialized."""
        with self._sweep_lock:
            report = SweepReport(started_at=time.time())
            assets = self.assets.find()
            report.total = len(assets)

            non_rentable: Dict[str, bool] = {}
            pending: List[AssetRecord] = []
            for asset in assets:
                if self._skip(asset, non_rentable):
                    report.skipped += 1
                else:
                    pending.append(asset)

            lock = threading.Lock()
            if self.workers == 1:
                for asset in pending:
                    self._sync_one(asset, report, lock)
            else:
                with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="rental-sync") as pool:
                    # list() waits for every worker
                    list(pool.map(lambda a: self._sync_one(a, report, lock), pending))

            report.finished_at = time.time()
            self.last_report = report
            if IS_DEV or report.failures:
                print(f"[SCHEDULER] Sweep done: total={report.total} synced={report.synced} "
                      f"active={report.active} skipped={report.skipped} failed={len(report.failures)}")
            return report

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except MarketplaceError as e:
                # store-level failure while listing assets; retry next interval
                print(f"[SCHEDULER] Sweep aborted: {e.message}")
            except Exception as e:
                print(f"[SCHEDULER] Sweep aborted: {type(e).__name__}: {e}")
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="rental-sync-scheduler", daemon=True)
        self._thread.start()
        print(f"[SCHEDULER] Started (interval={self.interval_seconds}s, workers={self.workers})")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        print("[SCHEDULER] Stopped")
