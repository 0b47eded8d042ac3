"""Superadmin Schemas — bootstrap and list management bodies."""

from pydantic import BaseModel, Field


class SuperadminInitialize(BaseModel):
    emails: list[str] = Field(min_length=1)


class SuperadminAdd(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    reason: str | None = Field(None, max_length=500)
