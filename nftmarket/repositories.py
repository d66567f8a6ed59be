"""
nftmarket/repositories.py

Typed pass-through CRUD over the document store, one repository per collection.

Repositories convert between stored dicts and the pydantic records in
nftmarket.models; they hold the store handle and nothing else.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from nftmarket.datastore import DocumentStore, Filter, Or
from nftmarket.models import (
    ACCOUNTS,
    ASSETS,
    CONTRACTS,
    AccountRecord,
    AccountStats,
    AssetRecord,
    ContractRecord,
)

T = TypeVar("T", bound=BaseModel)


def to_document(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Dump nested pydantic models so the store only ever sees JSON values."""
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, BaseModel):
            out[key] = value.model_dump(mode="json")
        elif isinstance(value, Enum):
            out[key] = value.value
        else:
            out[key] = value
    return out


class Repository(Generic[T]):
    collection: str = ""
    model: Type[T]

    def __init__(self, store: DocumentStore):
        self.store = store

    def _wrap(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        return self.model.model_validate(doc) if doc is not None else None

    def create(self, doc: Mapping[str, Any]) -> T:
        return self.model.model_validate(self.store.create(self.collection, to_document(doc)))

    def find_by_id(self, record_id: str) -> Optional[T]:
        return self._wrap(self.store.find_by_id(self.collection, record_id))

    def find_one(self, flt: Optional[Filter] = None) -> Optional[T]:
        return self._wrap(self.store.find_one(self.collection, flt))

    def find(
        self,
        flt: Optional[Filter] = None,
        sort: Optional[Tuple[str, int]] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[T]:
        docs = self.store.find(self.collection, flt, sort=sort, skip=skip, limit=limit)
        return [self.model.model_validate(d) for d in docs]

    def update_by_id(self, record_id: str, patch: Mapping[str, Any]) -> Optional[T]:
        return self._wrap(self.store.update_by_id(self.collection, record_id, to_document(patch)))

    def delete_by_id(self, record_id: str) -> bool:
        return self.store.delete_by_id(self.collection, record_id)

    def count(self, flt: Optional[Filter] = None) -> int:
        return self.store.count_documents(self.collection, flt)


class AssetRepository(Repository[AssetRecord]):
    collection = ASSETS
    model = AssetRecord

    def find_by_identity(self, contract_address: str, token_id: str) -> Optional[AssetRecord]:
        return self.find_one({"contract_address": contract_address.lower(), "token_id": str(token_id)})


class ContractRepository(Repository[ContractRecord]):
    collection = CONTRACTS
    model = ContractRecord

    def find_by_address(self, address: str) -> Optional[ContractRecord]:
        return self.find_one({"address": address.lower()})


class AccountRepository(Repository[AccountRecord]):
    collection = ACCOUNTS
    model = AccountRecord

    def create_account(self, username: str, wallet_address: Optional[str] = None,
                       password_hash: Optional[str] = None) -> AccountRecord:
        return self.create({
            "username": username,
            "password_hash": password_hash,
            "wallet_address": wallet_address.lower() if wallet_address else None,
            "owned_assets": [],
            "rented_assets": [],
            "rented_out_assets": [],
            "stats": AccountStats(),
        })

    def find_by_wallet(self, wallet_address: Optional[str]) -> Optional[AccountRecord]:
        if not wallet_address:
            return None
        return self.find_one({"wallet_address": wallet_address.lower()})

    def find_by_username(self, username: str) -> Optional[AccountRecord]:
        return self.find_one({"username": username})

    def holding(self, asset_id: str) -> List[AccountRecord]:
        """Accounts that list the asset as owned or rented out."""
        return self.find({"$or": Or([{"owned_assets": asset_id}, {"rented_out_assets": asset_id}])})
