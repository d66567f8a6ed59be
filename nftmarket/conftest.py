"""
Shared pytest fixtures: an in-memory ledger, temp-dir stores and a controllable clock.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from nftmarket.chain import ERC4907_INTERFACE_ID, ChainReader
from nftmarket.datastore import DocumentStore
from nftmarket.deadline import Deadline
from nftmarket.errors import ContractCallError, ExternalServiceError
from nftmarket.metadata import MetadataResolver
from nftmarket.models import ZERO_ADDRESS
from nftmarket.main import build_engine

CONTRACT = "0x" + "ab" * 20
PLAIN_CONTRACT = "0x" + "cd" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

NOW = 1_700_000_000

# {"name": "Rental Hero #7", "description": "test token", "image": "ipfs://QmImage/7.png"}
TOKEN_URI = (
    "data:application/json;base64,"
    "eyJuYW1lIjogIlJlbnRhbCBIZXJvICM3IiwgImRlc2NyaXB0aW9uIjogInRlc3QgdG9rZW4iLCAi"
    "aW1hZ2UiOiAiaXBmczovL1FtSW1hZ2UvNy5wbmcifQ=="
)


class StubChainReader(ChainReader):
    """
    Ledger double. Unknown tokens revert like a real ERC-721; contracts without an
    entry in `usage_rights` revert on userOf/userExpires.
    """

    def __init__(self):
        self.owners: Dict[Tuple[str, int], str] = {}
        self.uris: Dict[Tuple[str, int], str] = {}
        self.labels: Dict[str, Tuple[str, str]] = {}
        self.interfaces: Dict[str, bool] = {}
        self.usage_rights: Dict[str, Dict[int, Tuple[str, int]]] = {}
        self.fail: Dict[str, Exception] = {}
        self.calls: List[str] = []

    # -- setup helpers -----------------------------------------------------
    def mint(self, contract: str, token_id: int, owner: str, uri: str = "", rentable: bool = True) -> None:
        contract = contract.lower()
        self.owners[(contract, token_id)] = owner.lower()
        self.uris[(contract, token_id)] = uri
        self.labels.setdefault(contract, ("Rental Heroes", "HERO"))
        self.interfaces[contract] = rentable
        if rentable:
            self.usage_rights.setdefault(contract, {})

    def transfer(self, contract: str, token_id: int, new_owner: str) -> None:
        self.owners[(contract.lower(), token_id)] = new_owner.lower()

    def set_user(self, contract: str, token_id: int, user: str, expires: int) -> None:
        self.usage_rights.setdefault(contract.lower(), {})[token_id] = (user.lower(), expires)

    # -- ChainReader -------------------------------------------------------
    def _enter(self, method: str, deadline: Optional[Deadline]) -> None:
        self.calls.append(method)
        if deadline is not None:
            deadline.check(method)
        if method in self.fail:
            raise self.fail[method]

    def owner_of(self, contract, token_id, deadline=None):
        self._enter("owner_of", deadline)
        try:
            return self.owners[(contract.lower(), token_id)]
        except KeyError:
            raise ContractCallError("ERC721: invalid token ID")

    def token_uri(self, contract, token_id, deadline=None):
        self._enter("token_uri", deadline)
        if (contract.lower(), token_id) not in self.uris:
            raise ContractCallError("ERC721: invalid token ID")
        return self.uris[(contract.lower(), token_id)]

    def name(self, contract, deadline=None):
        self._enter("name", deadline)
        if contract.lower() not in self.labels:
            raise ContractCallError("no name()")
        return self.labels[contract.lower()][0]

    def symbol(self, contract, deadline=None):
        self._enter("symbol", deadline)
        if contract.lower() not in self.labels:
            raise ContractCallError("no symbol()")
        return self.labels[contract.lower()][1]

    def supports_interface(self, contract, interface_id, deadline=None):
        self._enter("supports_interface", deadline)
        if contract.lower() not in self.interfaces:
            raise ContractCallError("no ERC-165")
        return interface_id == ERC4907_INTERFACE_ID and self.interfaces[contract.lower()]

    def user_of(self, contract, token_id, deadline=None):
        self._enter("user_of", deadline)
        rights = self.usage_rights.get(contract.lower())
        if rights is None:
            raise ContractCallError("no userOf()")
        return rights.get(token_id, (ZERO_ADDRESS, 0))[0]

    def user_expires(self, contract, token_id, deadline=None):
        self._enter("user_expires", deadline)
        rights = self.usage_rights.get(contract.lower())
        if rights is None:
            raise ContractCallError("no userExpires()")
        return rights.get(token_id, (ZERO_ADDRESS, 0))[1]


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store(tmp_path):
    with DocumentStore(str(tmp_path / "datastore.json")) as s:
        yield s


@pytest.fixture
def chain():
    return StubChainReader()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver():
    return MetadataResolver(gateway="https://gateway.test/ipfs")


@pytest.fixture
def engine(store, chain, resolver, clock):
    return build_engine(store, chain, resolver, clock)


@pytest.fixture
def unreachable():
    return ExternalServiceError("Ledger RPC timed out after 10.0s")
