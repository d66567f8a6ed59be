# nftmarket/config.py
# Environment-aware configuration for the NFT rental marketplace backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "60"))

# Document store (single JSON snapshot file, rewritten on every mutation)
DATASTORE_PATH = os.environ.get("DATASTORE_PATH", os.path.join("data", "datastore.json"))

# Ledger access (JSON-RPC endpoint, Sepolia by default)
RPC_URL = os.environ.get("RPC_URL", os.environ.get("SEPOLIA_RPC_URL", "https://rpc.sepolia.org"))
RPC_TIMEOUT_SECONDS = float(os.environ.get("RPC_TIMEOUT_SECONDS", "10"))

# Metadata resolution
IPFS_GATEWAY = os.environ.get("IPFS_GATEWAY", "https://ipfs.io/ipfs").rstrip("/")
METADATA_TIMEOUT_SECONDS = float(os.environ.get("METADATA_TIMEOUT_SECONDS", "10"))

# Periodic rental sync
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "false").strip().lower() in ("1", "true", "yes", "on")
SYNC_INTERVAL_SECONDS = float(os.environ.get("SYNC_INTERVAL_SECONDS", "300"))
# 1 = strictly sequential sweep; >1 = bounded worker pool
SYNC_WORKERS = max(1, int(os.environ.get("SYNC_WORKERS", "1")))

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:3000",  # Next.js frontend default
    "http://127.0.0.1:3000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

if IS_DEV:
    print(f"[CONFIG] Environment: {ENV}")
    print(f"[CONFIG] Datastore: {DATASTORE_PATH}")
    print(f"[CONFIG] Ledger RPC timeout: {RPC_TIMEOUT_SECONDS}s, metadata timeout: {METADATA_TIMEOUT_SECONDS}s")
    print(f"[CONFIG] Rental sync scheduler: {'enabled' if SCHEDULER_ENABLED else 'disabled'} "
          f"(interval={SYNC_INTERVAL_SECONDS}s, workers={SYNC_WORKERS})")
