"""
nftmarket/routes_rentals.py

Rental endpoints.

- POST /api/rentals/sync   on-demand ERC-4907 sync for one token (auth required)
- POST /api/rentals/sweep  run one scheduler sweep now (dev only)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from nftmarket.auth_context import require_account
from nftmarket.config import IS_DEV
from nftmarket.dependencies import get_engine, get_scheduler, http_error, raise_for_result, require_dev
from nftmarket.errors import MarketplaceError
from nftmarket.models import AccountRecord
from nftmarket.reconcile import ReconciliationEngine, RentalSyncResult
from nftmarket.scheduler import RentalSyncScheduler, SweepReport
from nftmarket.schemas import SyncRequest

router = APIRouter(
    prefix="/api/rentals",
    tags=["rentals"],
)


@router.post("/sync", response_model=RentalSyncResult)
def sync_rental(
    request: SyncRequest,
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> RentalSyncResult:
    """
    Re-read usage rights for one token and mirror them into the store.

    Raises:
        HTTPException(400): malformed contract address / token id
        HTTPException(404): token missing, or contract has no usage-rights interface
        HTTPException(502): ledger unavailable
    """
    try:
        result = engine.sync_rental(request.contract_address, request.token_id)
    except MarketplaceError as e:
        raise http_error(e, "SYNC")
    raise_for_result(result)

    if IS_DEV:
        print(f"[SYNC] Manual sync by account_id={account.id}: active={result.active} renter={result.renter}")
    return result


@router.post("/sweep", response_model=SweepReport, dependencies=[Depends(require_dev)])
def run_sweep(scheduler: RentalSyncScheduler = Depends(get_scheduler)) -> SweepReport:
    try:
        return scheduler.run_once()
    except MarketplaceError as e:
        raise http_error(e, "SCHEDULER")
