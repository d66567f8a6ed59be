"""
nftmarket/reconcile.py

Reconciliation engine: mirrors ledger ownership and ERC-4907 usage rights into
the document store.

Operations:
- verify(contract, token_id, claimed_wallet)   ownership check + asset upsert
- sync_rental(contract, token_id)              rental state + account mirroring
- supports_time_bounded_usage(contract)        cached ERC-4907 capability check
- details(contract, token_id)                  read-only ledger view, no writes

Guarantees:
- the engine keeps no state of its own; every call re-reads the store and ledger
- validation runs before any I/O; validation, not-found and ownership mismatch
  come back as results (success=False + code), never as exceptions
- ExternalServiceError / StoreError propagate to the caller
- each record write is a single store call, so a record is never half-updated
- account mirroring is set-based: repeating a sync with unchanged ledger state
  changes nothing but updated_at

Known gap: when a grant expires and the ledger clears the user slot, the previous
renter can no longer be read, so their rented_assets entry is left in place.
Closing it needs the last-known renter persisted before expiry, or an event feed.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from nftmarket.chain import ERC4907_INTERFACE_ID, ChainReader
from nftmarket.config import IS_DEV, RPC_TIMEOUT_SECONDS
from nftmarket.deadline import Deadline
from nftmarket.errors import (
    CallCancelled,
    ContractCallError,
    ErrorCode,
    ExternalServiceError,
    ValidationError,
)
from nftmarket.metadata import MetadataResolver
from nftmarket.models import (
    ZERO_ADDRESS,
    AccountRecord,
    AccountStats,
    AssetRecord,
    ContractRecord,
    ContractType,
    RentalState,
    TokenMetadata,
)
from nftmarket.repositories import AccountRepository, AssetRepository, ContractRepository

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ---------------------------------------------------------
# Results
# ---------------------------------------------------------
class OperationResult(BaseModel):
    success: bool
    code: Optional[ErrorCode] = None
    error: Optional[str] = None


class VerificationResult(OperationResult):
    current_owner: Optional[str] = None
    asset: Optional[AssetRecord] = None
    contract: Optional[ContractRecord] = None
    can_rent: bool = False
    can_sell: bool = False
    is_listed: bool = False


class RentalSyncResult(OperationResult):
    owner: Optional[str] = None
    renter: Optional[str] = None
    active: bool = False
    expires: Optional[int] = None
    asset: Optional[AssetRecord] = None


class ContractInfo(BaseModel):
    name: str
    symbol: str
    type: ContractType


class DetailsResult(OperationResult):
    contract_address: Optional[str] = None
    token_id: Optional[str] = None
    owner: Optional[str] = None
    contract: Optional[ContractInfo] = None
    metadata: Optional[TokenMetadata] = None
    token_uri: str = ""
    is_listed: bool = False


# ---------------------------------------------------------
# Input validation (no I/O)
# ---------------------------------------------------------
def is_address(value: Any) -> bool:
    return isinstance(value, str) and bool(ADDRESS_RE.match(value))


def validate_address(value: Any, code: ErrorCode, label: str) -> str:
    if not is_address(value):
        raise ValidationError(f"Invalid {label}", code=code)
    return value.lower()


def validate_token_id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("Invalid token ID", code=ErrorCode.INVALID_TOKEN_ID)
    if isinstance(value, int):
        token_id = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        token_id = int(value.strip())
    else:
        raise ValidationError("Invalid token ID", code=ErrorCode.INVALID_TOKEN_ID)
    if token_id < 0 or token_id >= 2 ** 256:
        raise ValidationError("Invalid token ID", code=ErrorCode.INVALID_TOKEN_ID)
    return token_id


def _add(members: List[str], item: str) -> bool:
    """Set-style insert; True only when the item was not there yet."""
    if item in members:
        return False
    members.append(item)
    return True


def _remove(members: List[str], item: str) -> bool:
    if item not in members:
        return False
    members[:] = [m for m in members if m != item]
    return True


class ReconciliationEngine:
    """
    Stateless orchestrator over ChainReader, MetadataResolver and the store.

    `clock` returns unix seconds and is only used for rental activity checks and
    the rental_start approximation.
    """

    def __init__(
        self,
        assets: AssetRepository,
        contracts: ContractRepository,
        accounts: AccountRepository,
        chain: ChainReader,
        resolver: MetadataResolver,
        clock: Callable[[], float] = time.time,
        call_timeout: float = RPC_TIMEOUT_SECONDS * 3,
    ):
        self.assets = assets
        self.contracts = contracts
        self.accounts = accounts
        self.chain = chain
        self.resolver = resolver
        self.clock = clock
        self.call_timeout = call_timeout
        # account sets are read-modify-write; scheduler workers share one engine
        self._mirror_lock = threading.RLock()
        # find-then-create on assets and contracts must not interleave
        self._upsert_lock = threading.RLock()

    def _deadline(self, deadline: Optional[Deadline]) -> Deadline:
        return deadline or Deadline(timeout=self.call_timeout)

    # -----------------------------------------------------
    # Capability check
    # -----------------------------------------------------
    def supports_time_bounded_usage(self, contract_address: str, deadline: Optional[Deadline] = None) -> bool:
        """
        ERC-4907 check via supportsInterface(0xad092b5c), cached on the contract record.

        A reverted supportsInterface call (no ERC-165) is a definitive False and is cached; a
        transport failure returns False without caching so the next call asks the ledger again.
        """
        if not is_address(contract_address):
            return False
        address = contract_address.lower()
        record = self.contracts.find_by_address(address)
        if record is not None and record.supports_erc4907 is not None:
            return record.supports_erc4907

        supported, definitive = self._check_erc4907(address, self._deadline(deadline))
        if definitive and record is not None:
            self.contracts.update_by_id(record.id, {
                "supports_erc4907": supported,
                "type": ContractType.erc4907 if supported else ContractType.erc721,
            })
        return supported

    def _check_erc4907(self, address: str, deadline: Deadline) -> Tuple[bool, bool]:
        """(supported, definitive)"""
        try:
            return self.chain.supports_interface(address, ERC4907_INTERFACE_ID, deadline), True
        except CallCancelled:
            raise
        except ContractCallError as e:
            if IS_DEV:
                print(f"[VERIFY] supportsInterface reverted for {address}: {e}")
            return False, True
        except ExternalServiceError as e:
            print(f"[VERIFY] Could not check ERC4907 support for {address}: {e}")
            return False, False

    def _ensure_contract(self, address: str, deadline: Deadline) -> ContractRecord:
        record = self.contracts.find_by_address(address)
        if record is not None:
            if record.supports_erc4907 is None:
                self.supports_time_bounded_usage(address, deadline)
                record = self.contracts.find_by_id(record.id) or record
            return record

        name, symbol = self._contract_labels(address, deadline)
        supported, definitive = self._check_erc4907(address, deadline)
        with self._upsert_lock:
            existing = self.contracts.find_by_address(address)
            if existing is not None:
                return existing
            record = self.contracts.create({
                "address": address,
                "name": name,
                "symbol": symbol,
                "type": ContractType.erc4907 if supported else ContractType.erc721,
                "supports_erc4907": supported if definitive else None,
                "verified": False,
            })
        if IS_DEV:
            print(f"[VERIFY] Registered contract {address} ({name}/{symbol}, type={record.type.value})")
        return record

    def _contract_labels(self, address: str, deadline: Deadline) -> Tuple[str, str]:
        try:
            return self.chain.name(address, deadline), self.chain.symbol(address, deadline)
        except CallCancelled:
            raise
        except (ContractCallError, ExternalServiceError) as e:
            print(f"[VERIFY] Could not fetch contract name/symbol for {address}: {e}")
            return "Unknown", "Unknown"

    def _token_uri(self, address: str, token: int, deadline: Deadline) -> str:
        """Best effort; an empty reference resolves to placeholder metadata."""
        try:
            return self.chain.token_uri(address, token, deadline)
        except CallCancelled:
            raise
        except (ContractCallError, ExternalServiceError) as e:
            print(f"[VERIFY] Could not fetch token URI for {address}:{token}: {e}")
            return ""

    # -----------------------------------------------------
    # Verification
    # -----------------------------------------------------
    def verify(
        self,
        contract_address: Any,
        token_id: Any,
        claimed_wallet: Any = None,
        deadline: Optional[Deadline] = None,
    ) -> VerificationResult:
        try:
            address = validate_address(contract_address, ErrorCode.INVALID_CONTRACT_ADDRESS, "contract address")
            token = validate_token_id(token_id)
            wallet = None
            if claimed_wallet is not None:
                wallet = validate_address(claimed_wallet, ErrorCode.INVALID_WALLET_ADDRESS, "wallet address")
        except ValidationError as e:
            return VerificationResult(success=False, code=e.code, error=e.message)

        deadline = self._deadline(deadline)
        if IS_DEV:
            print(f"[VERIFY] contract={address} token={token} wallet={wallet}")

        try:
            owner = self.chain.owner_of(address, token, deadline).lower()
        except ContractCallError:
            return VerificationResult(
                success=False,
                code=ErrorCode.NOT_FOUND,
                error="NFT does not exist or contract is not ERC-721 compatible",
            )

        if wallet is not None and owner != wallet:
            return VerificationResult(
                success=False,
                code=ErrorCode.OWNERSHIP_MISMATCH,
                error=f"Wallet is not the owner of this NFT. Current owner: {owner}",
                current_owner=owner,
            )

        contract = self._ensure_contract(address, deadline)
        rentable = bool(contract.supports_erc4907)

        token_uri = self._token_uri(address, token, deadline)
        metadata, metadata_verified = self.resolver.resolve(token_uri, token, deadline)

        fields: Dict[str, Any] = {
            "owner": owner,
            "current_owner": owner,
            "contract_id": contract.id,
            "name": metadata.name,
            "description": metadata.description,
            "image": metadata.image,
            "metadata": metadata,
            "metadata_verified": metadata_verified,
            "rentable": rentable,
        }

        with self._upsert_lock:
            asset = self.assets.find_by_identity(address, str(token))
            if asset is None:
                asset = self.assets.create({
                    "contract_address": address,
                    "token_id": str(token),
                    "token_uri": token_uri,
                    "is_listed": False,
                    "listing_type": None,
                    "currency": "ETH",
                    "rental": RentalState(),
                    **fields,
                })
                print(f"[VERIFY] Created asset {asset.identifier} id={asset.id} owner={owner}")
            else:
                fields["token_uri"] = token_uri or asset.token_uri
                asset = self.assets.update_by_id(asset.id, fields) or asset

        self._mirror_ownership(asset, owner)

        return VerificationResult(
            success=True,
            current_owner=owner,
            asset=asset,
            contract=self.contracts.find_by_id(contract.id) or contract,
            can_rent=rentable,
            can_sell=True,
            is_listed=asset.is_listed,
        )

    # -----------------------------------------------------
    # Read-only details
    # -----------------------------------------------------
    def details(self, contract_address: Any, token_id: Any, deadline: Optional[Deadline] = None) -> DetailsResult:
        try:
            address = validate_address(contract_address, ErrorCode.INVALID_CONTRACT_ADDRESS, "contract address")
            token = validate_token_id(token_id)
        except ValidationError as e:
            return DetailsResult(success=False, code=e.code, error=e.message)

        deadline = self._deadline(deadline)
        try:
            owner = self.chain.owner_of(address, token, deadline).lower()
        except ContractCallError:
            return DetailsResult(
                success=False,
                code=ErrorCode.NOT_FOUND,
                error="NFT does not exist or contract is not ERC-721 compatible",
            )

        name, symbol = self._contract_labels(address, deadline)
        supported, _ = self._check_erc4907(address, deadline)
        token_uri = self._token_uri(address, token, deadline)
        metadata, _ = self.resolver.resolve(token_uri, token, deadline)

        existing = self.assets.find_by_identity(address, str(token))
        return DetailsResult(
            success=True,
            contract_address=address,
            token_id=str(token),
            owner=owner,
            contract=ContractInfo(
                name=name,
                symbol=symbol,
                type=ContractType.erc4907 if supported else ContractType.erc721,
            ),
            metadata=metadata,
            token_uri=token_uri,
            is_listed=existing.is_listed if existing else False,
        )

    # -----------------------------------------------------
    # Rental synchronization
    # -----------------------------------------------------
    def sync_rental(self, contract_address: Any, token_id: Any, deadline: Optional[Deadline] = None) -> RentalSyncResult:
        try:
            address = validate_address(contract_address, ErrorCode.INVALID_CONTRACT_ADDRESS, "contract address")
            token = validate_token_id(token_id)
        except ValidationError as e:
            return RentalSyncResult(success=False, code=e.code, error=e.message)

        deadline = self._deadline(deadline)
        try:
            owner = self.chain.owner_of(address, token, deadline).lower()
        except ContractCallError:
            return RentalSyncResult(
                success=False,
                code=ErrorCode.NOT_FOUND,
                error="NFT does not exist or contract is not ERC-721 compatible",
            )
        try:
            user = self.chain.user_of(address, token, deadline).lower()
            expires = int(self.chain.user_expires(address, token, deadline))
        except ContractCallError:
            return RentalSyncResult(
                success=False,
                code=ErrorCode.NOT_FOUND,
                error="Contract does not expose ERC-4907 usage rights",
                owner=owner,
            )

        contract = self._ensure_contract(address, deadline)
        now = int(self.clock())
        active = user != ZERO_ADDRESS and expires > now

        with self._upsert_lock:
            asset = self.assets.find_by_identity(address, str(token))
            if asset is None:
                asset = self.assets.create({
                    "contract_address": address,
                    "token_id": str(token),
                    "contract_id": contract.id,
                    "owner": owner,
                    "current_owner": owner,
                    "name": f"Token #{token}",
                    "is_listed": False,
                    "listing_type": None,
                    "rentable": True,
                    "rental": RentalState(),
                })
                print(f"[SYNC] Created minimal asset {asset.identifier} id={asset.id}")

            previous = asset.rental
            if active:
                same_lease = previous.is_rented and previous.current_renter == user
                rental = RentalState(
                    is_rented=True,
                    current_renter=user,
                    # Approximation: the true lease start is not readable from the ledger
                    rental_start=previous.rental_start if same_lease and previous.rental_start is not None else now,
                    rental_end=expires,
                )
            else:
                rental = RentalState(
                    is_rented=False,
                    current_renter=None,
                    rental_start=previous.rental_start,
                    rental_end=expires,
                )

            asset = self.assets.update_by_id(asset.id, {
                "owner": owner,
                "current_owner": owner,
                "contract_id": contract.id,
                "rentable": True,
                "rental": rental,
            }) or asset

        self._mirror_rental(asset, owner, user, active)

        if IS_DEV:
            print(f"[SYNC] {asset.identifier} owner={owner} user={user} expires={expires} active={active}")

        return RentalSyncResult(
            success=True,
            owner=owner,
            renter=user if active else None,
            active=active,
            expires=expires,
            asset=asset,
        )

    # -----------------------------------------------------
    # Account mirroring
    # -----------------------------------------------------
    def _save_sets(self, account: AccountRecord, owned: List[str], rented: List[str], rented_out: List[str],
                   stats: AccountStats) -> None:
        stats.total_owned = len(owned)
        if (owned == account.owned_assets and rented == account.rented_assets
                and rented_out == account.rented_out_assets and stats == account.stats):
            return
        self.accounts.update_by_id(account.id, {
            "owned_assets": owned,
            "rented_assets": rented,
            "rented_out_assets": rented_out,
            "stats": stats,
        })

    def _drop_stale_holders(self, asset_id: str, owner: str) -> None:
        """Accounts that are no longer the ledger owner lose the asset from owned/rented_out."""
        for account in self.accounts.holding(asset_id):
            if account.wallet_address == owner:
                continue
            owned = list(account.owned_assets)
            rented_out = list(account.rented_out_assets)
            _remove(owned, asset_id)
            _remove(rented_out, asset_id)
            if IS_DEV:
                print(f"[SYNC] Dropping {asset_id} from previous holder account={account.id}")
            self._save_sets(account, owned, list(account.rented_assets), rented_out, account.stats.model_copy())

    def _mirror_ownership(self, asset: AssetRecord, owner: str) -> None:
        with self._mirror_lock:
            self._drop_stale_holders(asset.id, owner)
            account = self.accounts.find_by_wallet(owner)
            if account is None:
                return
            owned = list(account.owned_assets)
            rented_out = list(account.rented_out_assets)
            if asset.id not in rented_out:
                _add(owned, asset.id)
            self._save_sets(account, owned, list(account.rented_assets), rented_out, account.stats.model_copy())

    def _mirror_rental(self, asset: AssetRecord, owner: str, user: str, active: bool) -> None:
        with self._mirror_lock:
            self._mirror_rental_locked(asset, owner, user, active)

    def _mirror_rental_locked(self, asset: AssetRecord, owner: str, user: str, active: bool) -> None:
        self._drop_stale_holders(asset.id, owner)

        owner_account = self.accounts.find_by_wallet(owner)
        if owner_account is not None:
            owned = list(owner_account.owned_assets)
            rented_out = list(owner_account.rented_out_assets)
            stats = owner_account.stats.model_copy()
            if active:
                _remove(owned, asset.id)
                if _add(rented_out, asset.id):
                    stats.total_rented_out += 1
            else:
                _remove(rented_out, asset.id)
                _add(owned, asset.id)
            self._save_sets(owner_account, owned, list(owner_account.rented_assets), rented_out, stats)

        if user == ZERO_ADDRESS:
            return
        renter_account = self.accounts.find_by_wallet(user)
        if renter_account is None:
            return
        rented = list(renter_account.rented_assets)
        stats = renter_account.stats.model_copy()
        if active:
            if _add(rented, asset.id):
                stats.total_rented += 1
        else:
            # Expired grant whose user slot is still populated on the ledger
            _remove(rented, asset.id)
        self._save_sets(
            renter_account,
            list(renter_account.owned_assets),
            rented,
            list(renter_account.rented_out_assets),
            stats,
        )
