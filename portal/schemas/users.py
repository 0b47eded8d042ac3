"""User Schemas — request bodies for admin user management.

Invariants:
    - Emails are stripped and lowercased before reaching services
    - Roles and statuses are validated against the domain enums
"""

from pydantic import BaseModel, Field, field_validator

from portal.core.domain_types import Role, UserStatus


class UserCreate(BaseModel):
    """New portal user, optionally assigned to customers."""
    email: str = Field(min_length=3, max_length=320)
    name: str | None = Field(None, max_length=200)
    role: Role = Role.VIEWER
    status: UserStatus = UserStatus.ACTIVE
    customers: list[str] = Field(default_factory=list)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain @")
        return v


class UserUpdate(BaseModel):
    """Partial user update; omitted fields stay unchanged."""
    name: str | None = Field(None, max_length=200)
    role: Role | None = None
    status: UserStatus | None = None


class CustomerAssignments(BaseModel):
    """Desired full set of customers for a user."""
    customer_ids: list[str] = Field(default_factory=list, alias="customerIds")

    model_config = {"populate_by_name": True}


class CustomerAssignment(BaseModel):
    role: Role | None = None
