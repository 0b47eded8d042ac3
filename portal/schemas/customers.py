"""Customer Schemas — request bodies for customers, members and team assignment.

Invariants:
    - CustomerCreate.name: non-empty after stripping
    - Updates carry only the fields the caller sets
"""

from pydantic import BaseModel, Field, field_validator

from portal.core.domain_types import Role


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    contactEmail: str | None = None
    google_domain: str | None = None
    project: str | None = None
    epic: str | None = None
    environment: str = "UAT"
    status: str = "active"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty or whitespace")
        return v


class CustomerUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    contactEmail: str | None = None
    google_domain: str | None = None
    project: str | None = None
    epic: str | None = None
    environment: str | None = None
    status: str | None = None


class MemberAdd(BaseModel):
    """Customer or customer-team member to add."""
    user_id: str = Field(min_length=1, alias="userId")
    role: Role | None = None

    model_config = {"populate_by_name": True}


class TeamAssign(BaseModel):
    team_id: str = Field(min_length=1, alias="teamId")

    model_config = {"populate_by_name": True}
