"""
nftmarket/metadata.py

Token URI → TokenMetadata.

Supported reference forms:
- data:application/json;base64,<payload>
- data:application/json,<percent-encoded payload>
- ipfs://<cid>[/path]   (fetched through the configured gateway)
- http(s)://...         (fetched directly)

Anything that cannot be parsed or fetched degrades to a placeholder; callers never
see a metadata failure as an error.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Optional, Tuple
from urllib.parse import unquote

import requests

from nftmarket.config import IPFS_GATEWAY, IS_DEV, METADATA_TIMEOUT_SECONDS
from nftmarket.deadline import Deadline
from nftmarket.errors import ExternalServiceError
from nftmarket.models import TokenMetadata

DATA_JSON_BASE64 = "data:application/json;base64,"
DATA_JSON = "data:application/json,"
IPFS_SCHEME = "ipfs://"

USER_AGENT = "NFT-Rental-Marketplace/1.0"


class MetadataError(Exception):
    """Internal: a reference could not be turned into a metadata object."""


def placeholder_metadata(token_id: Any) -> TokenMetadata:
    return TokenMetadata(
        name=f"Token #{token_id}",
        description="Metadata not available",
        image="",
        attributes=[],
    )


class MetadataResolver:
    def __init__(
        self,
        gateway: str = IPFS_GATEWAY,
        timeout: float = METADATA_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.gateway = gateway.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def gateway_url(self, reference: str) -> str:
        """ipfs://<cid>/path (or ipfs://ipfs/<cid>) → <gateway>/<cid>/path"""
        path = reference[len(IPFS_SCHEME):]
        if path.startswith("ipfs/"):
            path = path[len("ipfs/"):]
        return f"{self.gateway}/{path.lstrip('/')}"

    def resolve(self, reference: Optional[str], token_id: Any, deadline: Optional[Deadline] = None) -> Tuple[TokenMetadata, bool]:
        """
        Resolve a token URI.

        Returns (metadata, verified); verified is False when the placeholder was used.
        A cancelled or expired deadline also degrades to the placeholder.
        """
        if not reference:
            return placeholder_metadata(token_id), False
        try:
            payload = self._load(reference.strip(), deadline or Deadline.none())
        except (MetadataError, ExternalServiceError) as e:
            print(f"[METADATA] Falling back to placeholder for token {token_id}: {e}")
            return placeholder_metadata(token_id), False
        return self._normalize(payload, token_id), True

    def _load(self, reference: str, deadline: Deadline) -> Dict[str, Any]:
        if reference.startswith(DATA_JSON_BASE64):
            try:
                raw = base64.b64decode(reference[len(DATA_JSON_BASE64):], validate=False)
                return self._parse(raw.decode("utf-8"))
            except (binascii.Error, UnicodeDecodeError) as e:
                raise MetadataError(f"bad base64 payload: {e}")
        if reference.startswith(DATA_JSON):
            return self._parse(unquote(reference[len(DATA_JSON):]))
        if reference.startswith(IPFS_SCHEME):
            return self._fetch(self.gateway_url(reference), deadline)
        if reference.startswith(("http://", "https://")):
            return self._fetch(reference, deadline)
        raise MetadataError(f"unsupported reference scheme: {reference[:16]}...")

    def _parse(self, text: str) -> Dict[str, Any]:
        try:
            payload = json.loads(text)
        except ValueError as e:
            raise MetadataError(f"invalid JSON: {e}")
        if not isinstance(payload, dict):
            raise MetadataError("metadata is not a JSON object")
        return payload

    def _fetch(self, url: str, deadline: Deadline) -> Dict[str, Any]:
        timeout = deadline.timeout_for(self.timeout, label="metadata fetch")
        if IS_DEV:
            print(f"[METADATA] Fetching {url} (timeout={timeout:.1f}s)")
        try:
            resp = self.session.get(
                url,
                timeout=timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise ExternalServiceError(f"metadata fetch failed: {type(e).__name__}")
        return self._parse(resp.text)

    def _normalize(self, payload: Dict[str, Any], token_id: Any) -> TokenMetadata:
        image = payload.get("image") or payload.get("image_url") or ""
        if isinstance(image, str) and image.startswith(IPFS_SCHEME):
            image = self.gateway_url(image)
        attributes = payload.get("attributes")
        if not isinstance(attributes, list):
            attributes = []
        return TokenMetadata(
            name=str(payload.get("name") or f"Token #{token_id}"),
            description=str(payload.get("description") or "No description available"),
            image=image if isinstance(image, str) else "",
            attributes=[a for a in attributes if isinstance(a, dict)],
        )
