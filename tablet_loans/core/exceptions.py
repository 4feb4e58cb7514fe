"""Error kinds raised by the loan ledger.

Every ledger failure is one of three kinds. Each is raised before the
operation writes anything, so the surrounding transaction is rolled back
without partial effects.
"""
import enum


class EntityKind(str, enum.Enum):
    DEVICE = "device"
    BORROWER = "borrower"
    LOAN = "loan"
    LOSS_REPORT = "loss_report"


class ConflictReason(str, enum.Enum):
    DEVICE_NOT_SERVICEABLE = "device_not_serviceable"
    DEVICE_ALREADY_BORROWED = "device_already_borrowed"
    ALREADY_RETURNED = "already_returned"
    DEVICE_ALREADY_LOST = "device_already_lost"


class LedgerError(Exception):
    pass


class NotFoundError(LedgerError):
    def __init__(self, entity: EntityKind, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.value.replace('_', ' ').capitalize()} not found: {entity_id}")


class ConflictError(LedgerError):
    def __init__(self, reason: ConflictReason, message: str):
        self.reason = reason
        super().__init__(message)


class ValidationFailure(LedgerError):
    pass
