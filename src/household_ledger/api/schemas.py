from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class AccountCreate(BaseModel):
    name: str = Field(min_length=1)
    type: str = "transaction"
    balance: Decimal | None = None
    institution: str | None = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: str
    balance: Decimal
    currency: str
    institution: str | None = None


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    parent_id: str | None = None


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    parent_id: str | None = None
    is_system: bool
    sort_order: int


class TransactionUpdate(BaseModel):
    """Only the fields actually sent are applied; ``category_id: null`` clears the category."""
    category_id: str | None = None
    notes: str | None = None
    is_excluded: bool | None = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    account_id: str
    date: date
    description: str
    clean_description: str | None = None
    amount: Decimal
    direction: str
    category_id: str | None = None
    category_source: str | None = None
    is_transfer: bool
    transfer_source: str | None = None
    is_excluded: bool
    linked_transaction_id: str | None = None
    notes: str | None = None


class BulkCategoriseRequest(BaseModel):
    transaction_ids: list[str] = Field(min_length=1)
    category_id: str


class BulkCategoriseResponse(BaseModel):
    updated: int


class DeleteCategoryResponse(BaseModel):
    success: bool = True
    reassigned: int = 0


class RescanResponse(BaseModel):
    message: str
    linked_transfers: int
