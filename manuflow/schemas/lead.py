import uuid
import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

LeadStage = Literal[
    "new", "contacted", "analysis", "proposal", "negotiation",
    "won", "hold", "progress", "completed", "lost",
]


class LeadCreate(BaseModel):
    deal_name: str = Field(min_length=1, max_length=100)
    amount: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    product: str = Field(min_length=1, max_length=100)
    stage: LeadStage = "new"
    date: datetime.date
    customer_id: uuid.UUID
    attained_through: str | None = Field(default=None, max_length=50)
    document_url: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class LeadUpdate(BaseModel):
    deal_name: str | None = Field(default=None, min_length=1, max_length=100)
    amount: Decimal | None = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    product: str | None = Field(default=None, min_length=1, max_length=100)
    stage: LeadStage | None = None
    date: datetime.date | None = None
    customer_id: uuid.UUID | None = None
    attained_through: str | None = Field(default=None, max_length=50)
    document_url: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class LeadActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    activity_type: str
    description: str | None = None
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    created_at: datetime.datetime


class LeadResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    deal_name: str
    amount: Decimal
    product: str
    stage: str
    date: datetime.date
    customer_id: uuid.UUID
    created_by: uuid.UUID
    attained_through: str | None = None
    document_url: str | None = None
    notes: str | None = None
    created_at: datetime.datetime
    updated_at: datetime.datetime | None = None


class LeadDetailResponse(LeadResponse):
    customer_name: str | None = None
    activities: list[LeadActivityResponse] = []


class LeadListResponse(BaseModel):
    items: list[LeadResponse]
    total: int
    page: int
    page_size: int
