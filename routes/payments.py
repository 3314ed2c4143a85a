# routes/payments.py
from fastapi import APIRouter, Depends

from app.mpesa.client import DarajaClient
from app.payments.service import initiate_payment
from app.transactions.repository import TransactionStore
from deps.mpesa import get_daraja_client
from deps.store import get_store
from schemas import ErrorResponse, StkPushRequest, StkPushResponse

router = APIRouter(prefix="/v1/payments", tags=["payments"])

_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


@router.post("/stk-push", response_model=StkPushResponse, responses=_ERRORS)
def stk_push(
    body: StkPushRequest,
    store: TransactionStore = Depends(get_store),
    client: DarajaClient = Depends(get_daraja_client),
):
    # PaymentError subclasses are rendered by the handler in main.py
    result = initiate_payment(
        store,
        client,
        phone_number=body.phone_number,
        amount=body.amount,
        user_id=body.user_id,
    )
    return StkPushResponse(
        transaction_id=result.transaction_id,
        correlation_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id,
        message=result.customer_message or StkPushResponse.model_fields["message"].default,
    )
