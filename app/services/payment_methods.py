"""
Per-method validation of a payment's free-form ``details`` payload.

Each payment method that needs supporting details has a pydantic model;
methods without one (CASH, ONLINE, OTHER) accept any details.
"""

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError
from app.models.payment import PaymentMethod


class _Details(BaseModel):
    model_config = ConfigDict(extra="allow")


class BankTransferDetails(_Details):
    bank_name: str | None = None
    account_number: str | None = None
    reference_id: str = Field(..., min_length=1)


class ChequeDetails(_Details):
    cheque_number: str = Field(..., min_length=1)
    bank_name: str = Field(..., min_length=1)
    due_date: str | None = None


class CardDetails(_Details):
    last_four_digits: str = Field(..., pattern=r"^\d{4}$")
    card_type: str | None = None
    auth_code: str | None = None


DETAIL_SCHEMAS: dict[PaymentMethod, type[BaseModel]] = {
    PaymentMethod.BANK_TRANSFER: BankTransferDetails,
    PaymentMethod.CHEQUE: ChequeDetails,
    PaymentMethod.CARD: CardDetails,
}


def validate_payment_details(method: PaymentMethod, details: dict | None) -> dict | None:
    """
    Validate *details* for *method* and return them normalised.

    Raises ValidationError naming the first offending field.
    """
    schema = DETAIL_SCHEMAS.get(PaymentMethod(method))
    if schema is None:
        return details

    try:
        parsed = schema.model_validate(details or {})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "details"
        raise ValidationError(
            f"Invalid {PaymentMethod(method).value} details: {field}: {first['msg']}"
        ) from exc

    return parsed.model_dump(exclude_none=True)
