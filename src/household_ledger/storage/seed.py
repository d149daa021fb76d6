from sqlalchemy.orm import Session

from household_ledger.logger import get_logger
from household_ledger.storage.repository import LedgerRepository

logger = get_logger(__name__)

SAVINGS_TRANSFER = "Savings Transfer"
LOAN_REPAYMENT = "Loan Repayment"
PERSONAL_LOAN_REPAYMENT = "Personal Loan Repayment"
UNCATEGORISED = "Uncategorised"

# (name, sort order); grouped income / essential / discretionary / financial / other
SYSTEM_CATEGORIES: tuple[tuple[str, int], ...] = (
    ("Salary/Wages", 1),
    ("Government Benefits", 2),
    ("Other Income", 3),
    ("Groceries", 10),
    ("Rent/Mortgage", 11),
    ("Utilities", 12),
    ("Insurance", 13),
    ("Health/Medical", 14),
    ("Transport/Fuel", 15),
    ("Phone/Internet", 16),
    ("Childcare/Education", 17),
    ("Dining Out/Takeaway", 20),
    ("Entertainment/Streaming", 21),
    ("Shopping/Clothing", 22),
    ("Hobbies", 23),
    ("Personal Care", 24),
    ("Gifts", 25),
    (SAVINGS_TRANSFER, 30),
    (LOAN_REPAYMENT, 31),
    (PERSONAL_LOAN_REPAYMENT, 32),
    ("Investment", 33),
    ("Fees/Charges", 34),
    (UNCATEGORISED, 99),
)


def seed_categories(session: Session) -> int:
    """Upsert the protected system catalogue; returns the number of new rows."""
    repository = LedgerRepository(session)
    created = 0
    for name, sort_order in SYSTEM_CATEGORIES:
        category = repository.find_category_by_name(name)
        if category is None:
            repository.create_category(name=name, sort_order=sort_order, is_system=True)
            created += 1
        else:
            category.sort_order = sort_order
            category.is_system = True
    session.commit()
    if created:
        logger.info(f"[DB] Seeded {created} system categories.")
    return created
