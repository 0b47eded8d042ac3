"""System Schemas — debug KV writes and login profile fields."""

from typing import Any

from pydantic import BaseModel


class KVValue(BaseModel):
    value: Any


class UserLogin(BaseModel):
    name: str | None = None
    avatar_url: str | None = None
