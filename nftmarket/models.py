from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from enum import Enum

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Collection names in the document store
ASSETS = "assets"
CONTRACTS = "contracts"
ACCOUNTS = "accounts"


# Enums
class ContractType(str, Enum):
    erc721 = "ERC721"
    erc4907 = "ERC4907"

class ListingType(str, Enum):
    sale = "sale"
    rental = "rental"
    auction = "auction"


# Embedded documents
class TokenMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    image: str = ""
    attributes: List[Dict[str, Any]] = Field(default_factory=list)

class RentalState(BaseModel):
    is_rented: bool = False
    current_renter: Optional[str] = None
    rental_start: Optional[int] = None  # unix seconds; first observed-active sync, not the true lease start
    rental_end: Optional[int] = None    # unix seconds, as reported by userExpires

class AccountStats(BaseModel):
    total_owned: int = Field(0, ge=0)
    total_rented: int = Field(0, ge=0)
    total_rented_out: int = Field(0, ge=0)


# Records (every stored record carries id / created_at / updated_at)
class StoredRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    created_at: str
    updated_at: str

class AssetRecord(StoredRecord):
    contract_address: str  # lower-case
    token_id: str          # decimal string
    contract_id: Optional[str] = None
    owner: str
    current_owner: str
    name: str = ""
    description: str = ""
    image: str = ""
    token_uri: str = ""
    metadata: Optional[TokenMetadata] = None
    metadata_verified: bool = False
    rentable: bool = False
    is_listed: bool = False
    listing_type: Optional[ListingType] = None
    currency: str = "ETH"
    rental: RentalState = Field(default_factory=RentalState)

    @property
    def identifier(self) -> str:
        return f"{self.contract_address}:{self.token_id}"

class ContractRecord(StoredRecord):
    address: str  # lower-case
    name: str = "Unknown"
    symbol: str = "Unknown"
    type: ContractType = ContractType.erc721
    supports_erc4907: Optional[bool] = None  # None until the first definitive supportsInterface answer
    verified: bool = False

class AccountRecord(StoredRecord):
    username: str
    password_hash: Optional[str] = Field(None, exclude=True)
    wallet_address: Optional[str] = None  # lower-case
    owned_assets: List[str] = Field(default_factory=list)
    rented_assets: List[str] = Field(default_factory=list)
    rented_out_assets: List[str] = Field(default_factory=list)
    stats: AccountStats = Field(default_factory=AccountStats)
