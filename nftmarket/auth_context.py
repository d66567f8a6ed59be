"""
nftmarket/auth_context.py

Authentication primitives for FastAPI dependency injection.

Contains:
- hash_password / verify_password: sha256 password hashing
- create_access_token: HS256 JWT with `sub` = account id
- verify_token: JWT verification (401 on expired / invalid)
- require_account: FastAPI dependency returning the caller's AccountRecord

The account is always loaded from the store; never trust an account id or wallet
taken from a request body. This module MUST NOT import nftmarket.main.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from nftmarket.config import ACCESS_TOKEN_MINUTES, ALGORITHM, IS_DEV, SECRET_KEY
from nftmarket.errors import StoreError
from nftmarket.models import AccountRecord

# Security scheme for HTTPBearer
security = HTTPBearer()


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def verify_password(password: str, password_hash: str) -> bool:
    return hash_password(password) == password_hash


def create_access_token(account_id: str, minutes: int = ACCESS_TOKEN_MINUTES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": account_id,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def require_account(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AccountRecord:
    """
    Auth dependency for protected routes.

    Usage:
        @router.get("/me")
        def me(account: AccountRecord = Depends(require_account)):
            ...

    Raises:
        HTTPException(401): token invalid/expired, or the account no longer exists
        HTTPException(500): datastore unavailable
    """
    payload = verify_token(credentials.credentials)
    account_id = payload.get("sub")

    if not account_id:
        print("[AUTH] Missing sub in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        account = request.app.state.engine.accounts.find_by_id(account_id)
    except StoreError as e:
        print(f"[AUTH] Datastore error loading account: {e.message}")
        raise HTTPException(status_code=500, detail="Datastore error")

    if account is None:
        print(f"[AUTH] Account not found: account_id={account_id}")
        raise HTTPException(status_code=401, detail="Account not found")

    if IS_DEV:
        print(f"[AUTH] Authenticated: account_id={account.id}, username={account.username}, "
              f"wallet={account.wallet_address}")

    return account
