from typing import Annotated

from fastapi import APIRouter, Depends

from household_ledger.api.dependencies import get_ledger_service, get_repository
from household_ledger.api.schemas import CategoryCreate, CategoryOut, DeleteCategoryResponse
from household_ledger.services.ledger import LedgerService
from household_ledger.storage.repository import LedgerRepository

router = APIRouter(prefix="/api/categories")


@router.get("", response_model=list[CategoryOut])
async def list_categories(
    repository: Annotated[LedgerRepository, Depends(get_repository)],
) -> list[CategoryOut]:
    return [CategoryOut.model_validate(category) for category in repository.list_categories()]


@router.post("", response_model=CategoryOut, status_code=201)
async def create_category(
    req: CategoryCreate,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
) -> CategoryOut:
    return CategoryOut.model_validate(ledger.create_category(req.name, parent_id=req.parent_id))


@router.delete("/{category_id}", response_model=DeleteCategoryResponse)
async def delete_category(
    category_id: str,
    ledger: Annotated[LedgerService, Depends(get_ledger_service)],
    reassign_to: str | None = None,
) -> DeleteCategoryResponse:
    moved = ledger.delete_category(category_id, reassign_to=reassign_to)
    return DeleteCategoryResponse(reassigned=moved)
