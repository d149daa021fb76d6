from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field

Direction = Literal["debit", "credit"]
CategorySource = Literal["rule", "ai", "manual", "auto"]


class FeedRecord(BaseModel):
    """One raw row from a CSV export or an aggregator feed, before parsing."""
    date: str = ""
    description: str = ""
    credit: Optional[str] = None
    debit: Optional[str] = None
    amount: Optional[str] = None  # signed, used when credit/debit are empty
    balance: Optional[str] = None
    external_id: Optional[str] = None
    clean_description: Optional[str] = None


class Category(BaseModel):
    name: str
    id: Optional[str] = None


class CategorizationResult(BaseModel):
    category: Category
    confidence: float  # 0.0 to 1.0
    source: CategorySource
    is_transfer: bool = False
    clean_description: Optional[str] = None


class ClassificationRequest(BaseModel):
    id: str
    description: str
    amount: str
    direction: Direction
    account_name: str
    account_type: str
    date: str


class AccountContext(BaseModel):
    name: str
    type: str


class ClassificationContext(BaseModel):
    categories: list[Category] = Field(default_factory=list)
    accounts: list[AccountContext] = Field(default_factory=list)
    fallback_category_id: Optional[str] = None


class ImportResult(BaseModel):
    account_id: str
    imported: int = 0
    duplicates: int = 0
    invalid: int = 0
    updated: int = 0
    new_transaction_ids: list[str] = Field(default_factory=list)
    balance: Optional[Decimal] = None

    @computed_field
    @property
    def skipped(self) -> int:
        return self.duplicates + self.invalid


class TierTwoResult(BaseModel):
    processed: int = 0
    ai_categorised: int = 0
    rule_categorised: int = 0
    ai_transfers: int = 0


class IngestSummary(BaseModel):
    message: str
    imported: int = 0
    skipped: int = 0
    updated: int = 0
    ai_categorised: int = 0
    ai_transfers: int = 0
    linked_transfers: int = 0


class RecategoriseSummary(BaseModel):
    message: str
    ai_categorised: int = 0
    ai_transfers: int = 0
    linked_transfers: int = 0
    total_processed: int = 0


class SyncSummary(BaseModel):
    message: str
    connections: int = 0
    failed: int = 0
    synced: int = 0
    updated: int = 0
