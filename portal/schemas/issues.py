"""Issue Schemas — request bodies for Linear issue mutations and board moves.

Invariants:
    - IssueCreate.title: 1-500 chars, stripped
    - priority follows Linear's scale (0 none, 1 urgent .. 4 low)
    - IssueMove columns are KanbanColumn values
"""

from pydantic import BaseModel, Field, field_validator

from portal.core.domain_types import KanbanColumn


class IssueCreate(BaseModel):
    team_id: str = Field(min_length=1, alias="teamId")
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(None, max_length=50_000)
    priority: int | None = Field(None, ge=0, le=4)
    assignee_id: str | None = Field(None, alias="assigneeId")
    state_id: str | None = Field(None, alias="stateId")
    label_ids: list[str] | None = Field(None, alias="labelIds")
    cycle_id: str | None = Field(None, alias="cycleId")
    parent_id: str | None = Field(None, alias="parentId")

    model_config = {"populate_by_name": True}

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty or whitespace")
        return v


class SubIssueCreate(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(None, max_length=50_000)


class IssueStateUpdate(BaseModel):
    state_id: str = Field(min_length=1, alias="stateId")

    model_config = {"populate_by_name": True}


class CommentCreate(BaseModel):
    body: str = Field(min_length=1, max_length=50_000)


class IssueMove(BaseModel):
    """Drag-and-drop move between board columns."""
    team_id: str = Field(min_length=1, alias="teamId")
    source_column: KanbanColumn = Field(alias="sourceColumn")
    target_column: KanbanColumn = Field(alias="targetColumn")

    model_config = {"populate_by_name": True}


class CacheInvalidate(BaseModel):
    team_id: str = Field(min_length=1, alias="teamId")

    model_config = {"populate_by_name": True}
