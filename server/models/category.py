"""Category data models"""
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from utils.validation import sanitize_input

CategoryType = Literal["income", "expense"]


class CategoryBase(BaseModel):
    type: Optional[CategoryType] = None
    description: Optional[str] = None
    parent_id: Optional[str] = None
    color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    icon: Optional[str] = Field(None, max_length=50)

    @field_validator("description", mode="before")
    @classmethod
    def _sanitize(cls, v):
        if isinstance(v, str):
            return sanitize_input(v) or None
        return v


class CategoryCreate(CategoryBase):
    name: str = Field(..., min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_input(v) if isinstance(v, str) else v


class CategoryUpdate(CategoryBase):
    name: Optional[str] = Field(None, min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_input(v) if isinstance(v, str) else v
