from fastapi import HTTPException, Request

from ..ledger.engine import TransferEngine
from ..ledger.errors import (
    AccountNotFound,
    ConcurrencyConflict,
    DuplicateAccount,
    DuplicateReference,
    InsufficientCredit,
    LedgerError,
    PersistenceFailure,
)
from ..ledger.ports import UnitOfWorkFactory
from .serializers import serialize_error

_STATUS_BY_ERROR = {
    AccountNotFound: 404,
    InsufficientCredit: 400,
    DuplicateAccount: 409,
    DuplicateReference: 409,
    ConcurrencyConflict: 409,
    PersistenceFailure: 503,
}


def get_uow_factory(request: Request) -> UnitOfWorkFactory:
    """
    Unit-of-work factory configured on the application.
    """
    return request.app.state.uow_factory


def get_transfer_engine(request: Request) -> TransferEngine:
    return request.app.state.transfer_engine


def http_error(exc: LedgerError) -> HTTPException:
    """Map a ledger error to the HTTP status callers see."""

    status_code = 400
    for error_type, code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return HTTPException(status_code=status_code, detail=serialize_error(exc))
