"""
Transfer heuristics.

``TRANSFER_PATTERNS`` decides whether a description is a transfer candidate
at all. The keyword table then decides which transfer category a candidate
gets when no counterpart on another account can be found. Rules are tried
in order and the first hit wins.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass

from household_ledger.storage.seed import LOAN_REPAYMENT, PERSONAL_LOAN_REPAYMENT, SAVINGS_TRANSFER

TRANSFER_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bTRANSFER\s+(TO|FROM)\b",
        r"\bINTERNET\s+TRANSFER\b",
        r"\bOSKO\s+(PAYMENT|TRANSFER)\b",
        r"\bFAST\s+PAYMENT\b",
        r"\bINTERNAL\s+TRANSFER\b",
        r"\bSAVINGS\s+MAXIMISER\b",
        r"\bORANGE\s+EVERYDAY\b",
        r"\bBPAY\b",
        r"\bDIRECT\s+DEBIT.*MORTGAGE\b",
        r"\bLOAN\s+REPAYMENT\b",
        r"\bHOME\s+LOAN\b",
        r"\bPERSONAL\s+LOAN\b",
        r"\bLOAN\s+PAYMENT\b",
        r"\bSETTLEMENT\b",
        r"\bLOAN\s+PAYOUT\b",
        r"\bDISCHARGE\b",
        r"\bREFINANC",
        r"\bDEBT\s+CONSOLIDAT",
        r"\bPAYOUT\b",
    )
)

# Destination account type -> transfer category
ACCOUNT_TYPE_CATEGORIES: dict[str, str] = {
    "savings": SAVINGS_TRANSFER,
    "loan": LOAN_REPAYMENT,
    "personal-loan": PERSONAL_LOAN_REPAYMENT,
}

TRANSFER_CATEGORY_NAMES: tuple[str, ...] = (SAVINGS_TRANSFER, LOAN_REPAYMENT, PERSONAL_LOAN_REPAYMENT)


def looks_like_transfer(description: str) -> bool:
    return any(pattern.search(description) for pattern in TRANSFER_PATTERNS)


def category_for_account_type(account_type: str | None) -> str:
    return ACCOUNT_TYPE_CATEGORIES.get(account_type or "", SAVINGS_TRANSFER)


@dataclass(frozen=True)
class KeywordRule:
    """
    ``categories`` are tried in order against the resolved catalogue, so a
    rule can prefer a specific category and fall back to a broader one.
    """
    categories: tuple[str, ...]
    any_of: tuple[str, ...]
    all_of: tuple[str, ...] = ()

    def matches(self, upper_description: str) -> bool:
        if not any(keyword in upper_description for keyword in self.any_of):
            return False
        return all(keyword in upper_description for keyword in self.all_of)


def default_keyword_table(lender_keywords: Iterable[str] | None = None) -> list[KeywordRule]:
    lenders = tuple(keyword.upper() for keyword in (lender_keywords or ()))
    table = [
        KeywordRule(categories=(LOAN_REPAYMENT,), any_of=("MORTGAGE", "HOME LOAN")),
        KeywordRule(categories=(PERSONAL_LOAN_REPAYMENT, LOAN_REPAYMENT), any_of=("PERSONAL LOAN",)),
        KeywordRule(categories=(LOAN_REPAYMENT,), any_of=("LOAN REPAYMENT", "LOAN PAYMENT")),
    ]
    if lenders:
        table.append(KeywordRule(categories=(LOAN_REPAYMENT,), any_of=lenders, all_of=("BPAY",)))
    table.append(KeywordRule(categories=(SAVINGS_TRANSFER,), any_of=("TRANSFER", "SAVINGS")))
    return table


class TransferPatternMatcher:
    def __init__(self, keyword_table: list[KeywordRule] | None = None) -> None:
        self.keyword_table = keyword_table if keyword_table is not None else default_keyword_table()

    @staticmethod
    def is_candidate(description: str) -> bool:
        return looks_like_transfer(description)

    def keyword_rule(self, description: str) -> KeywordRule | None:
        upper_description = description.upper()
        for rule in self.keyword_table:
            if rule.matches(upper_description):
                return rule
        return None

    def keyword_category_id(self, description: str, category_ids: dict[str, str]) -> str | None:
        """Resolve the keyword fallback to a category id, or ``None`` when nothing confident applies."""
        rule = self.keyword_rule(description)
        if rule is None:
            return None
        for name in rule.categories:
            category_id = category_ids.get(name)
            if category_id:
                return category_id
        return None
