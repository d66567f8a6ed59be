"""
nftmarket/dependencies.py

Reusable FastAPI dependencies and the result → HTTP status mapping.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from nftmarket.config import IS_DEV
from nftmarket.errors import ErrorCode, MarketplaceError
from nftmarket.reconcile import OperationResult, ReconciliationEngine
from nftmarket.scheduler import RentalSyncScheduler

STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_CONTRACT_ADDRESS: 400,
    ErrorCode.INVALID_TOKEN_ID: 400,
    ErrorCode.INVALID_WALLET_ADDRESS: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.OWNERSHIP_MISMATCH: 403,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.CANCELLED: 502,
    ErrorCode.STORE_ERROR: 500,
}


def get_engine(request: Request) -> ReconciliationEngine:
    return request.app.state.engine


def get_scheduler(request: Request) -> RentalSyncScheduler:
    return request.app.state.scheduler


def require_dev() -> None:
    """Gate for administrative routes (delete, manual sweep)."""
    if not IS_DEV:
        raise HTTPException(status_code=403, detail="Admin endpoints only available in dev")


def _detail(code: ErrorCode, message: str, **extra: Any) -> Dict[str, Any]:
    detail: Dict[str, Any] = {"code": code.value, "error": message}
    detail.update({k: v for k, v in extra.items() if v is not None})
    return detail


def raise_for_result(result: OperationResult, current_owner: Optional[str] = None) -> None:
    """Turn an unsuccessful engine result into the matching HTTPException."""
    if result.success:
        return
    code = result.code or ErrorCode.EXTERNAL_SERVICE_ERROR
    raise HTTPException(
        status_code=STATUS_BY_CODE.get(code, 400),
        detail=_detail(code, result.error or "Request failed", current_owner=current_owner),
    )


def http_error(e: MarketplaceError, tag: str) -> HTTPException:
    """Map a propagated core exception; internal details stay in the log."""
    status = STATUS_BY_CODE.get(e.code, 500)
    print(f"[{tag}] {type(e).__name__}: {e.message}")
    if status == 500:
        return HTTPException(status_code=status, detail=_detail(e.code, "Datastore error"))
    if status == 502:
        return HTTPException(status_code=status, detail=_detail(e.code, "Ledger or metadata service unavailable"))
    return HTTPException(status_code=status, detail=_detail(e.code, e.message))
