"""Result models returned by the orchestrated operations."""

from typing import Literal, TypeAlias

from pydantic import BaseModel, Field

OperationStatus: TypeAlias = Literal["success", "skipped", "failed", "fatal"]


class OperationResult(BaseModel):
    """The single user-facing outcome of an orchestrated operation."""

    name: str
    status: OperationStatus
    message: str = ""
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "success"


class UpdateResult(BaseModel):
    branch: str
    old_commit: str
    new_commit: str | None = None
    message: str
    already_up_to_date: bool = False


class SwitchResult(BaseModel):
    tag: str
    message: str
    warnings: list[str] = Field(default_factory=list)
