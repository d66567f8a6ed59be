"""
nftmarket/routes_assets.py

Asset endpoints: ownership verification, read-only ledger details and
pass-through queries over the assets collection.

- POST   /api/nft/verify      verify ownership + upsert (auth required)
- GET    /api/nft/details     ledger view, no store writes
- GET    /api/nft             filtered / sorted / paginated listing
- GET    /api/nft/{asset_id}
- DELETE /api/nft/{asset_id}  administrative delete (dev only)
"""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from nftmarket.auth_context import require_account
from nftmarket.config import IS_DEV
from nftmarket.datastore import ASCENDING, DESCENDING, Regex
from nftmarket.dependencies import get_engine, http_error, raise_for_result, require_dev
from nftmarket.errors import MarketplaceError
from nftmarket.models import AccountRecord, AssetRecord
from nftmarket.reconcile import DetailsResult, ReconciliationEngine, VerificationResult
from nftmarket.schemas import AssetListResponse, VerifyRequest

router = APIRouter(
    prefix="/api/nft",
    tags=["nft"],
)

SORTABLE_FIELDS = ("created_at", "updated_at", "name", "token_id", "rental.rental_end")


@router.post("/verify", response_model=VerificationResult)
def verify_nft(
    request: VerifyRequest,
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> VerificationResult:
    """
    Verify that a wallet owns a token and record it.

    Raises:
        HTTPException(400): malformed contract address / token id / wallet
        HTTPException(403): wallet is not the ledger owner (detail carries current_owner)
        HTTPException(404): token does not exist on the ledger
        HTTPException(502): ledger unavailable
    """
    wallet = request.wallet_address if request.wallet_address is not None else account.wallet_address
    try:
        result = engine.verify(request.contract_address, request.token_id, claimed_wallet=wallet)
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    raise_for_result(result, current_owner=result.current_owner)

    if IS_DEV and result.asset:
        print(f"[ASSETS] Verified {result.asset.identifier} for account_id={account.id}")
    return result


@router.get("/details", response_model=DetailsResult)
def nft_details(
    contract_address: str = Query(..., description="Contract address"),
    token_id: str = Query(..., description="Token id"),
    engine: ReconciliationEngine = Depends(get_engine),
) -> DetailsResult:
    try:
        result = engine.details(contract_address, token_id)
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    raise_for_result(result)
    return result


@router.get("", response_model=AssetListResponse)
def list_nfts(
    q: Optional[str] = Query(None, min_length=1, max_length=200, description="Name substring search (case-insensitive)"),
    contract_address: Optional[str] = Query(None, description="Filter by contract"),
    is_rented: Optional[bool] = Query(None, description="Filter by active rental"),
    rentable: Optional[bool] = Query(None, description="Filter by ERC-4907 capability"),
    sort: str = Query("created_at", description=f"One of {', '.join(SORTABLE_FIELDS)}"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    skip: int = Query(0, ge=0, le=5000),
    limit: int = Query(50, ge=1, le=200),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AssetListResponse:
    if sort not in SORTABLE_FIELDS:
        raise HTTPException(status_code=400, detail=f"Invalid sort field. Valid options: {list(SORTABLE_FIELDS)}")

    flt: Dict[str, Any] = {}
    if q:
        flt["name"] = Regex(re.escape(q), case_insensitive=True)
    if contract_address:
        flt["contract_address"] = contract_address.lower()
    if is_rented is not None:
        flt["rental.is_rented"] = is_rented
    if rentable is not None:
        flt["rentable"] = rentable

    try:
        items = engine.assets.find(
            flt,
            sort=(sort, ASCENDING if order == "asc" else DESCENDING),
            skip=skip,
            limit=limit,
        )
        total = engine.assets.count(flt)
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    return AssetListResponse(items=items, total=total)


@router.get("/{asset_id}", response_model=AssetRecord)
def get_nft(
    asset_id: str = Path(..., min_length=1),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AssetRecord:
    try:
        asset = engine.assets.find_by_id(asset_id)
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


@router.delete("/{asset_id}", dependencies=[Depends(require_dev)])
def delete_nft(
    asset_id: str = Path(..., min_length=1),
    engine: ReconciliationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    try:
        deleted = engine.assets.delete_by_id(asset_id)
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    if not deleted:
        raise HTTPException(status_code=404, detail="Asset not found")
    print(f"[ADMIN] Deleted asset {asset_id}")
    return {"status": "ok", "deleted": asset_id}
