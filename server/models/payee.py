"""Payee data models"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from utils.validation import sanitize_input


class PayeeBase(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)
    category_id: Optional[str] = None
    notes: Optional[str] = None
    description: Optional[str] = None

    @field_validator("email", "phone", "address", "tax_id", "notes", "description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        if isinstance(v, str):
            return sanitize_input(v) or None
        return v


class PayeeCreate(PayeeBase):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_input(v) if isinstance(v, str) else v


class PayeeUpdate(PayeeBase):
    name: Optional[str] = Field(None, min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_input(v) if isinstance(v, str) else v
