"""
nftmarket/schemas.py

Pydantic request/response schemas for the HTTP routes.

Contract address and token id pass through untouched; the engine validates them
before any I/O and reports INVALID_* codes (HTTP 400).
"""

from __future__ import annotations

import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from nftmarket.models import AccountRecord, AssetRecord

_WALLET_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _normalize_wallet(v: Any) -> Any:
    if v is None:
        return v
    if not isinstance(v, str) or not _WALLET_RE.match(v.strip()):
        raise ValueError("wallet_address must be 0x followed by 40 hex characters")
    return v.strip().lower()


# ========================================================================
# ACCOUNT SCHEMAS
# ========================================================================

class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, description="Unique username")
    password: str = Field(..., min_length=6, max_length=128, description="Account password")
    wallet_address: Optional[str] = Field(None, description="Wallet address (0x + 40 hex)")

    @field_validator("username", mode="before")
    @classmethod
    def trim_username(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("wallet_address", mode="before")
    @classmethod
    def validate_wallet(cls, v):
        return _normalize_wallet(v)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("username", mode="before")
    @classmethod
    def trim_username(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class WalletRequest(BaseModel):
    wallet_address: str = Field(..., description="Wallet address (0x + 40 hex)")

    @field_validator("wallet_address", mode="before")
    @classmethod
    def validate_wallet(cls, v):
        return _normalize_wallet(v)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountRecord


# ========================================================================
# ASSET / RENTAL SCHEMAS
# ========================================================================

class VerifyRequest(BaseModel):
    """wallet_address defaults to the caller's registered wallet when omitted."""
    contract_address: Any = Field(..., description="ERC-721 contract address")
    token_id: Any = Field(..., description="Token id (non-negative integer or decimal string)")
    wallet_address: Optional[Any] = Field(None, description="Wallet claiming ownership")


class SyncRequest(BaseModel):
    contract_address: Any = Field(..., description="ERC-4907 contract address")
    token_id: Any = Field(..., description="Token id (non-negative integer or decimal string)")


class AssetListResponse(BaseModel):
    items: List[AssetRecord] = Field(default_factory=list)
    total: int = Field(0, description="Total matches before skip/limit")
