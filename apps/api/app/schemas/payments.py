from typing import Any

from pydantic import BaseModel, Field, field_validator


class WebhookAck(BaseModel):
    received: bool = True


class WebhookProbeResponse(BaseModel):
    ok: bool = True


class PixPaymentRequest(BaseModel):
    payer_email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    description: str | None = Field(default=None, max_length=255)


class PixPaymentResponse(BaseModel):
    order_id: str
    payment_id: str
    status: str
    qr_code: str | None = None
    qr_code_base64: str | None = None
    ticket_url: str | None = None
    date_of_expiration: str | None = None


class CardPayerIdentification(BaseModel):
    type: str = Field(min_length=1, max_length=16)
    number: str = Field(min_length=1, max_length=32)


class CardPayer(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    identification: CardPayerIdentification | None = None


class CardPaymentRequest(BaseModel):
    """Form data produced by the card Payment Brick."""

    token: str = Field(min_length=1, max_length=255)
    payment_method_id: str = Field(min_length=1, max_length=64)
    issuer_id: str | None = Field(default=None, max_length=64)
    installments: int = 1
    payer: CardPayer
    description: str | None = Field(default=None, max_length=255)

    @field_validator("issuer_id", mode="before")
    @classmethod
    def stringify_issuer(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def form_data(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            exclude={"description", "installments"},
            exclude_none=True,
        )


class CardPaymentResponse(BaseModel):
    order_id: str
    payment_id: str
    status: str
    status_detail: str | None = None
    payment_method_id: str | None = None


class PreferenceRequest(BaseModel):
    payer_email: str | None = Field(
        default=None, min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$"
    )


class PreferenceResponse(BaseModel):
    order_id: str
    preference_id: str
    init_point: str | None = None
    sandbox_init_point: str | None = None


class PaymentStatusResponse(BaseModel):
    ok: bool
    payment_id: str
    payment_status: str | None = None
    status_detail: str | None = None
    error: str | None = None
