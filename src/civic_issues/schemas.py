"""Request and response models for the HTTP API."""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class IssueOwner(CamelModel):
    id: str
    name: str


class IssueOut(CamelModel):
    """Serialized issue."""

    id: str
    title: str
    description: Optional[str] = None
    latitude: float
    longitude: float
    location: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    priority: str
    status: str
    user_id: str
    user: Optional[IssueOwner] = None
    created_at: datetime
    updated_at: datetime


class IssueCreate(CamelModel):
    """Request body for reporting an issue.

    Fields are loosely typed here; lengths, ranges and enumerations are checked
    by the mutation service so every failure is reported per field.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location: Optional[str] = None
    images: Optional[List[str]] = None
    category: Optional[str] = None
    priority: Optional[str] = None


class IssueUpdate(IssueCreate):
    """Request body for updating an issue. Status is applied for admins only."""

    status: Optional[str] = None


class StatusUpdate(CamelModel):
    status: Optional[str] = None


class BulkStatusUpdate(CamelModel):
    issue_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None


class PageMetaOut(CamelModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


class ApiResponse(CamelModel, Generic[T]):
    """Standard success envelope."""

    success: bool = True
    message: str = ""
    data: Optional[T] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class PaginatedResponse(CamelModel, Generic[T]):
    """Success envelope carrying one page of results."""

    success: bool = True
    message: str = ""
    data: List[T] = Field(default_factory=list)
    pagination: PageMetaOut
    timestamp: datetime = Field(default_factory=_utcnow)


class FieldError(CamelModel):
    field: str
    message: str
    value: Any = None


class ErrorResponse(CamelModel):
    success: bool = False
    message: str
    code: str
    errors: Optional[List[FieldError]] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class DeletedIssue(CamelModel):
    deleted_issue_id: str


class IssueStats(CamelModel):
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]


class UserCounts(CamelModel):
    total: int
    admins: int
    regular_users: int


class StatsSummary(CamelModel):
    total_issues: int
    total_users: int
    pending_issues: int
    resolved_issues: int


class SystemStats(CamelModel):
    issues: IssueStats
    users: UserCounts
    summary: StatsSummary


class BulkSummary(CamelModel):
    total: int
    successful: int
    failed: int


class BulkSuccess(CamelModel):
    issue_id: str
    issue: IssueOut


class BulkFailure(CamelModel):
    issue_id: str
    code: str
    message: str


class BulkStatusOut(CamelModel):
    summary: BulkSummary
    successful: List[BulkSuccess]
    failed: List[BulkFailure]


class UserOut(CamelModel):
    """User as listed for admins."""

    id: str
    name: str
    email: str
    role: str
    issues_count: int = 0
    created_at: datetime
    updated_at: datetime


class UserDetails(CamelModel):
    id: str
    name: str
    email: str
    role: str
    member_since: datetime
    total_issues: int
    issue_statistics: Dict[str, int]


class RoleUpdate(CamelModel):
    role: Optional[str] = None


class DeletedUser(CamelModel):
    deleted_user_id: str
    deleted_issues: int
