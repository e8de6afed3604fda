from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

CURRENCY_PATTERN = r"^[A-Za-z]{3}$"
TEXT_MAX_LENGTH = 255
TRANSFER_MAX_LENGTH = 64
CATEGORY_NAME_MAX_LENGTH = 64


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    balance: float = Field(0.0, allow_inf_nan=False)
    currency: str = Field("INR", pattern=CURRENCY_PATTERN)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Account name cannot be empty.")
        return value

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class AccountUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, max_length=64)
    balance: Optional[float] = Field(default=None, allow_inf_nan=False)
    currency: Optional[str] = Field(default=None, pattern=CURRENCY_PATTERN)

    @field_validator("name")
    @classmethod
    def _blank_name_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class StagedTransaction(BaseModel):
    """One pending ledger row as persisted in ``ImportData.data``."""

    model_config = ConfigDict(extra="ignore")

    account_id: int
    owner_id: int
    created_by: int
    updated_by: Optional[int] = None
    text: str = Field(default="", max_length=TEXT_MAX_LENGTH)
    amount: float = Field(..., ge=0, allow_inf_nan=False)
    is_income: bool
    category_id: Optional[int] = None
    transfer: Optional[str] = Field(default=None, max_length=TRANSFER_MAX_LENGTH)
    created_at: Optional[datetime] = None
    recurrence_end_date: Optional[datetime] = None
