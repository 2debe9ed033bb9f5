from __future__ import annotations


class AccountingError(Exception):
    """Base class for failures surfaced to callers of the accounting core."""


class NotFoundError(AccountingError):
    def __init__(self, entity: str, identifier: str) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class InvalidInputError(AccountingError):
    def __init__(self, message: str, *, fields: tuple[str, ...] = ()) -> None:
        self.fields = fields
        super().__init__(message)


class DuplicateTransactionError(AccountingError):
    def __init__(self, *, organization_id: str, tx_hash: str) -> None:
        self.organization_id = organization_id
        self.tx_hash = tx_hash
        super().__init__(
            f"transaction already exists or references are invalid: organization={organization_id} tx_hash={tx_hash}"
        )
