from typing import Union

import base58
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user: Union[str, int] = Field(alias='userId')
    signature: str = Field(min_length=64, max_length=128)

    @field_validator('signature')
    @classmethod
    def _base58_signature(cls, value: str) -> str:
        try:
            decoded = base58.b58decode(value)
        except ValueError as exc:
            raise ValueError('signature must be base58 encoded') from exc
        if len(decoded) != 64:
            raise ValueError('signature must decode to 64 bytes')
        return value


class SponsorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user: Union[str, int] = Field(alias='userId')
    transaction: str = Field(min_length=1)
    category: str = Field(default='USER_TRANSACTION', max_length=64)

    @field_validator('category')
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        return value.upper() or 'USER_TRANSACTION'


class PaymentPayloadRequest(BaseModel):
    """An X-PAYMENT value, taken from the header or from the `paymentHeader` body field."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    payment_header: str = Field(alias='paymentHeader', min_length=1)
