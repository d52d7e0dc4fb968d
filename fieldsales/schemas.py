import datetime
from typing import Optional

from pydantic import BaseModel, Field


class LoginIn(BaseModel):
    email: str = ''
    password: str = ''


class ProfileIn(BaseModel):
    name: str


class QuantitiesIn(BaseModel):
    quantities: dict[str, int] = Field(default_factory=dict)


class RequestCreateIn(QuantitiesIn):
    shop_id: Optional[int] = None


class SaleIn(QuantitiesIn):
    shop_id: Optional[int] = None


class DeliveryIn(BaseModel):
    date_label: str
    item_id: int
    qty: int


class ShopTransferIn(QuantitiesIn):
    from_shop_id: Optional[int] = None
    to_shop_id: int
    notes: Optional[str] = None


class CustomerReturnIn(QuantitiesIn):
    shop_id: Optional[int] = None
    reasons: dict[str, str] = Field(default_factory=dict)


class RepTransferIn(QuantitiesIn):
    rep_id: str
    notes: Optional[str] = None


class DailyIncomeIn(BaseModel):
    shop_id: Optional[int] = None
    date: Optional[datetime.date] = None
    total_sales: float = Field(allow_inf_nan=False)
    cash_sales: float = Field(0, allow_inf_nan=False)
    credit_sales: float = Field(0, allow_inf_nan=False)
    notes: Optional[str] = None
    confirm: bool = False


class ExpenseIn(BaseModel):
    amount: float = Field(allow_inf_nan=False)
    category: str
    description: Optional[str] = None


class StoreActionIn(BaseModel):
    action: str
    item_id: int
    qty: int
    rep_id: Optional[str] = None
    reference: Optional[str] = None
    remarks: Optional[str] = None
    reason: Optional[str] = None
