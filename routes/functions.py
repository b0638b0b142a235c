import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from core.db import get_db
from schemas.payment import FunctionError, PaymentVerificationRequest, PaymentVerificationResponse
from security.auth import resolve_user
from services.checkout_errors import InvalidRequest
from services.order_finalization import finalize_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["functions"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

INVALID_BODY = "Invalid request body"


def function_response(content: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=content, status_code=status_code, headers=CORS_HEADERS)


def function_error(message: str) -> JSONResponse:
    return function_response(FunctionError(error=message).model_dump(), status_code=400)


async def raw_body(request: Request) -> bytes:
    # Read unparsed so the caller is authenticated before the payload is judged
    return await request.body()


def parse_verification_request(body: bytes) -> PaymentVerificationRequest:
    if not body.strip():
        return PaymentVerificationRequest()
    try:
        return PaymentVerificationRequest.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("Rejected verify-payment body: %s", exc.errors())
        raise InvalidRequest(INVALID_BODY) from exc


@router.options("/verify-payment", include_in_schema=False)
def verify_payment_preflight():
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post(
    "/verify-payment",
    response_model=PaymentVerificationResponse,
    responses={400: {"model": FunctionError}},
    openapi_extra={
        "requestBody": {
            "content": {
                "application/json": {"schema": PaymentVerificationRequest.model_json_schema(by_alias=True)}
            },
        }
    },
)
def verify_payment(
    body: bytes = Depends(raw_body),
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db),
):
    """Verify a Paystack reference and turn the caller's cart into a paid order.

    Any non-200 answer means the payment may already be captured: the client
    should offer a support path rather than report the payment as failed.
    """
    try:
        user = resolve_user(db, authorization)
        verification = parse_verification_request(body)
        result = finalize_order(db, user, verification)
    except Exception as exc:
        logger.error("Function Error: %s", exc)
        return function_error(str(exc))
    payload = PaymentVerificationResponse(order_id=result.order_id)
    return function_response(payload.model_dump(by_alias=True))
