"""
nftmarket/routes_accounts.py

Account endpoints.

- POST /accounts/register           create account, returns access token (public)
- POST /accounts/login              exchange username + password for a fresh token (public)
- GET  /accounts/me
- POST /accounts/wallet             link / replace the caller's wallet
- GET  /accounts/me/owned           assets mirrored as owned
- GET  /accounts/me/rented          assets the caller currently rents
- GET  /accounts/me/rented-out      caller's assets with an active renter

Wallet addresses are unique across accounts (lower-case comparison).
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from nftmarket.auth_context import create_access_token, hash_password, require_account, verify_password
from nftmarket.config import IS_DEV
from nftmarket.datastore import In
from nftmarket.dependencies import get_engine, http_error
from nftmarket.errors import MarketplaceError
from nftmarket.models import AccountRecord
from nftmarket.reconcile import ReconciliationEngine
from nftmarket.schemas import AssetListResponse, LoginRequest, RegisterRequest, TokenResponse, WalletRequest

router = APIRouter(
    prefix="/accounts",
    tags=["accounts"],
)


@router.post("/register", response_model=TokenResponse)
def register(
    request: RegisterRequest,
    engine: ReconciliationEngine = Depends(get_engine),
) -> TokenResponse:
    try:
        if engine.accounts.find_by_username(request.username):
            raise HTTPException(status_code=409, detail="Username already taken")
        if request.wallet_address and engine.accounts.find_by_wallet(request.wallet_address):
            raise HTTPException(status_code=409, detail="Wallet already linked to another account")
        account = engine.accounts.create_account(
            request.username,
            request.wallet_address,
            password_hash=hash_password(request.password),
        )
    except MarketplaceError as e:
        raise http_error(e, "AUTH")

    print(f"[AUTH] Registered account_id={account.id} username={account.username}")
    return TokenResponse(access_token=create_access_token(account.id), account=account)


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    engine: ReconciliationEngine = Depends(get_engine),
) -> TokenResponse:
    try:
        account = engine.accounts.find_by_username(request.username)
    except MarketplaceError as e:
        raise http_error(e, "AUTH")

    if not account or not account.password_hash or not verify_password(request.password, account.password_hash):
        print(f"[AUTH] Login failed for username={request.username}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if IS_DEV:
        print(f"[AUTH] Login account_id={account.id}")
    return TokenResponse(access_token=create_access_token(account.id), account=account)


@router.get("/me", response_model=AccountRecord)
def me(account: AccountRecord = Depends(require_account)) -> AccountRecord:
    return account


@router.post("/wallet", response_model=AccountRecord)
def link_wallet(
    request: WalletRequest,
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AccountRecord:
    """
    Link a wallet to the caller's account.

    Mirrored sets are not rebuilt here; the next verify / sync of each asset
    brings them in line with the ledger.
    """
    try:
        existing = engine.accounts.find_by_wallet(request.wallet_address)
        if existing and existing.id != account.id:
            raise HTTPException(status_code=409, detail="Wallet already linked to another account")
        updated = engine.accounts.update_by_id(account.id, {"wallet_address": request.wallet_address})
    except MarketplaceError as e:
        raise http_error(e, "AUTH")
    if updated is None:
        raise HTTPException(status_code=404, detail="Account not found")

    if IS_DEV:
        print(f"[AUTH] Linked wallet {request.wallet_address} to account_id={account.id}")
    return updated


def _assets_by_id(engine: ReconciliationEngine, asset_ids: List[str]) -> AssetListResponse:
    if not asset_ids:
        return AssetListResponse(items=[], total=0)
    try:
        items = engine.assets.find({"id": In(asset_ids)})
    except MarketplaceError as e:
        raise http_error(e, "ASSETS")
    return AssetListResponse(items=items, total=len(items))


@router.get("/me/owned", response_model=AssetListResponse)
def my_owned(
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AssetListResponse:
    return _assets_by_id(engine, account.owned_assets)


@router.get("/me/rented", response_model=AssetListResponse)
def my_rented(
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AssetListResponse:
    return _assets_by_id(engine, account.rented_assets)


@router.get("/me/rented-out", response_model=AssetListResponse)
def my_rented_out(
    account: AccountRecord = Depends(require_account),
    engine: ReconciliationEngine = Depends(get_engine),
) -> AssetListResponse:
    return _assets_by_id(engine, account.rented_out_assets)
