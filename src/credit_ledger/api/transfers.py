from fastapi import APIRouter, Depends

from ..ledger.engine import TransferEngine
from ..ledger.errors import LedgerError
from ..logging_config import get_logger
from .deps import get_transfer_engine, http_error
from .schemas import TransferIn, TransferOut
from .serializers import serialize_receipt

logger = get_logger("credit_ledger.api.transfers")

router = APIRouter(tags=["transfers"])


@router.post("/transfer", response_model=TransferOut)
async def transfer_credit(payload: TransferIn, engine: TransferEngine = Depends(get_transfer_engine)):
    """
    Move credit from one account to another.

    Rejections (4xx) leave every account untouched. A 503 means storage
    failed; when `in_doubt` is true, check the reference before retrying.
    """
    try:
        receipt = await engine.transfer(
            payload.sender_account,
            payload.receiver_account,
            payload.amount,
            reference=payload.reference,
        )
    except LedgerError as exc:
        raise http_error(exc)
    return serialize_receipt(receipt)
