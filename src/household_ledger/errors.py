class LedgerError(Exception):
    """Base class for failures that reject a whole ledger operation."""

    status_code = 400


class AccountNotFoundError(LedgerError):
    status_code = 404

    def __init__(self, account_id: str) -> None:
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class CategoryNotFoundError(LedgerError):
    status_code = 404

    def __init__(self, category_id: str) -> None:
        super().__init__(f"Category not found: {category_id}")
        self.category_id = category_id


class TransactionNotFoundError(LedgerError):
    status_code = 404

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction not found: {transaction_id}")
        self.transaction_id = transaction_id


class ProtectedCategoryError(LedgerError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Cannot delete system category: {name}")
        self.name = name


class BasiqError(LedgerError):
    """The aggregator rejected a request or could not be reached."""

    status_code = 502
