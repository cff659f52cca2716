
from datetime import date, datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

InvoiceStatus = Literal["draft", "sent", "viewed", "partial", "overdue", "paid", "void", "approved"]


class LineItem(BaseModel):
    description: str = ""
    quantity: float = Field(default=1.0)
    unit_price: float = Field(default=0.0)
    amount: float = Field(default=0.0)
    tax_rate: float | None = Field(default=None)


class Invoice(BaseModel):
    id: str
    invoice_number: str
    customer_id: str
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: float = Field(default=0.0)
    tax_rate: float = Field(default=0.0)  # Fraction, e.g. 0.1 for 10%
    tax_amount: float = Field(default=0.0)
    total: float = Field(default=0.0)
    balance_due: float | None = Field(default=None)
    currency: str = Field(default="USD")
    issue_date: date | None = Field(default=None)
    due_date: date | None = Field(default=None)
    status: InvoiceStatus = Field(default="draft")
    department: str | None = Field(default=None)
    submitted_at: datetime | None = Field(default=None)
    custom_fields: dict[str, Any] = Field(default_factory=dict)

    @property
    def outstanding(self) -> float:
        return self.total if self.balance_due is None else self.balance_due


class Customer(BaseModel):
    id: str
    name: str
    email: str | None = Field(default=None)
    address: str | None = Field(default=None)
    payment_terms_days: int = Field(default=30)
    is_active: bool = Field(default=True)
    customer_type: str | None = Field(default=None)
    risk_score: float = Field(default=0.0)
    created_at: datetime | None = Field(default=None)
