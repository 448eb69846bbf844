from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionStatus, TransactionType


class LineItem(BaseModel):
    name: str
    price: float
    quantity: int = 1


class ReceiptPayload(BaseModel):
    merchant: Optional[str] = None
    total: float = 0
    tax: float = 0
    subtotal: float = 0
    items: list[LineItem] = Field(default_factory=list)


class TransactionIn(BaseModel):
    """A write payload that already passed the transaction validator."""

    type: TransactionType
    category: str = Field(..., min_length=1, max_length=50)
    amount: float = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)
    date: datetime
    merchant: Optional[str] = Field(default=None, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    status: TransactionStatus = TransactionStatus.completed
    receipt: Optional[ReceiptPayload] = None


class RegisterIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    email: str = ""
    password: str = ""


class LoginIn(BaseModel):
    email: str = ""
    password: str = ""
