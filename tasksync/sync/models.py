"""
Pydantic models for the sync service.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field


TaskId = Union[int, str]


# ========== Task ==========

class Task(BaseModel):
    """
    A single task as stored in an account's collection.

    Only the fields the reminder scheduler inspects are declared; any other
    field a client sends (tags, subtasks, quadrant, ...) is kept as-is.
    """
    id: TaskId
    title: Optional[str] = ""
    date: Optional[str] = None
    start: Optional[str] = None
    status: str = "todo"
    deletedAt: Optional[Union[int, str]] = None
    remindAt: Optional[int] = None  # ms epoch
    notifiedAt: Optional[int] = None  # ms epoch

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "id": 1704067200000,
                "title": "Dentist",
                "date": "2024-01-01",
                "start": "09:30",
                "status": "todo",
                "remindAt": 1704101340000,
                "notifiedAt": None,
                "tags": ["health"],
            }
        }

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_deleted(self) -> bool:
        return bool(self.deletedAt)


# ========== Snapshot / Write Result ==========

@dataclass
class Snapshot:
    """The complete task collection for one account plus its version stamp."""
    collection: List[Dict[str, Any]] = field(default_factory=list)
    version: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.collection


@dataclass(frozen=True)
class WriteResult:
    """Outcome of VersionedStore.write."""
    accepted: bool
    new_version: Optional[int]
    server_version: int


# ========== Request/Response Models ==========

class SyncPullResponse(BaseModel):
    """Server copy of the account's collection."""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    version: int = 0

    class Config:
        json_schema_extra = {
            "example": {
                "data": [{"id": 1, "title": "Dentist", "status": "todo"}],
                "version": 1704153600000
            }
        }


class SyncPushRequest(BaseModel):
    """
    Client replaces its whole collection.

    `version` is the last server version the client has seen.
    """
    data: List[Task] = Field(default_factory=list)
    version: int = 0
    force: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "data": [{"id": 1, "title": "Dentist", "status": "todo"}],
                "version": 1704153600000,
                "force": False
            }
        }

    def collection(self) -> List[Dict[str, Any]]:
        """Tasks as plain dicts, keeping exactly the fields the client sent."""
        return [task.model_dump(exclude_unset=True) for task in self.data]


class SyncPushResponse(BaseModel):
    """Write accepted."""
    success: bool = True
    version: int


class ConflictResponse(BaseModel):
    """Write rejected because the server holds a newer version."""
    error: str = "Conflict"
    serverVersion: int
    message: str = "Server data is newer"
