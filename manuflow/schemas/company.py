import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    industry: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=100)


class CompanyUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    industry: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=100)


class CompanyCustomer(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str


class CompanyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    industry: str | None = None
    location: str | None = None
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime | None = None


class CompanyDetailResponse(CompanyResponse):
    customers: list[CompanyCustomer] = []


class CompanyListResponse(BaseModel):
    items: list[CompanyResponse]
    total: int
    page: int
    page_size: int
