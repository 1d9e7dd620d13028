"""Service layer for listing, reporting and triaging issues and managing users."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, NoReturn, Optional, Tuple, Type

from prometheus_client import Counter
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from .config import Settings, settings as default_settings
from .constants import (
    CATEGORY_MAX_LENGTH,
    CATEGORY_MIN_LENGTH,
    DEFAULT_RADIUS_KM,
    DESCRIPTION_MAX_LENGTH,
    LOCATION_MAX_LENGTH,
    MAX_IMAGES,
    TITLE_MAX_LENGTH,
    TITLE_MIN_LENGTH,
    IssueStatus,
    Priority,
    Role,
)
from .database import Database
from .errors import (
    Conflict,
    InternalError,
    InvalidCoordinate,
    InvalidEnumValue,
    NotFound,
    ServiceError,
    ValidationError,
    field_error,
)
from .filters import IssueFilter, ilike_contains, parse_enum
from .geo import validate_coordinates, validate_radius
from .guard import (
    can_change_status,
    ensure_can_change_status,
    ensure_can_mutate,
    ensure_can_view_admin_data,
)
from .models.issue import Issue, IssueImage
from .models.user import User
from .pagination import PageRequest, PageResult, build_meta
from .workflow import INITIAL_STATUS, apply_status, parse_status, transition


logger = logging.getLogger(__name__)

# Prometheus counters for key service events
ISSUE_CREATED_COUNTER = Counter("issues_created_total", "Total issues reported")
ISSUE_UPDATED_COUNTER = Counter("issues_updated_total", "Total issue updates applied")
ISSUE_DELETED_COUNTER = Counter("issues_deleted_total", "Total issues deleted")
STATUS_CHANGE_COUNTER = Counter(
    "issue_status_changes_total", "Total issue status changes", ["status"]
)
USER_DELETED_COUNTER = Counter("users_deleted_total", "Total users deleted by admins")
ROLE_CHANGE_COUNTER = Counter("user_role_changes_total", "Total user role changes", ["role"])

UPDATABLE_FIELDS = frozenset(
    {"title", "description", "category", "priority", "images", "location", "latitude", "longitude"}
)


def _handle_service_error(session: Session, exc: Exception) -> NoReturn:
    """Rollback the transaction and translate persistence failures."""
    session.rollback()
    if isinstance(exc, ServiceError):
        raise exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, IntegrityError):
        raise Conflict("Resource conflicts with existing data") from exc
    if isinstance(exc, SQLAlchemyError):
        raise InternalError("Database error") from exc
    raise exc


def _with_relations(query):
    return query.options(joinedload(Issue.user), selectinload(Issue.image_rows))


def _load_issue(session: Session, issue_id: str, refresh: bool = False) -> Issue:
    query = _with_relations(session.query(Issue)).filter(Issue.id == issue_id)
    if refresh:
        query = query.populate_existing()
    issue = query.first()
    if issue is None:
        raise NotFound("Issue not found")
    return issue


def _load_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _issue_stats(session: Session, owner_id: Optional[str]) -> Dict[str, Any]:
    def grouped(column) -> List[Tuple[str, int]]:
        query = session.query(column, func.count(Issue.id))
        if owner_id:
            query = query.filter(Issue.user_id == owner_id)
        return query.group_by(column).all()

    by_status = {status.value.lower(): 0 for status in IssueStatus}
    for value, count in grouped(Issue.status):
        by_status[value.lower()] = count
    by_priority = {priority.value.lower(): 0 for priority in Priority}
    for value, count in grouped(Issue.priority):
        by_priority[value.lower()] = count
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_priority": by_priority,
    }


@dataclass(frozen=True)
class DeletedRef:
    """Identifier and image references of a deleted issue."""

    issue_id: str
    images: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeletedUserRef:
    """A deleted user with the image references of the issues removed alongside."""

    user_id: str
    deleted_issues: int = 0
    images: List[str] = field(default_factory=list)


@dataclass
class BulkStatusResult:
    status: IssueStatus
    succeeded: List[Issue] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class IssueQueryService:
    """Read-only issue listings built from compiled filters and pages."""

    def __init__(self, db: Database):
        self.db = db

    def list(
        self, issue_filter: Optional[IssueFilter] = None, page: Optional[PageRequest] = None
    ) -> PageResult:
        """Return one page of issues matching ``issue_filter``.

        The count and the fetch run under the same predicate in one session so
        ``total_items`` agrees with the returned page. Newest issues come first.
        """
        issue_filter = issue_filter or IssueFilter()
        page = page or PageRequest()
        with self.db.session() as session:
            try:
                query = session.query(Issue)
                predicate = issue_filter.predicate()
                if predicate is not None:
                    query = query.filter(predicate)
                total = query.count()
                items = []
                # pages past the end are empty without reaching the database
                if page.offset < total:
                    items = (
                        _with_relations(query)
                        .order_by(Issue.created_at.desc(), Issue.id.desc())
                        .offset(page.offset)
                        .limit(page.limit)
                        .all()
                    )
                logger.debug(
                    "listed issues page=%s limit=%s total=%s", page.page, page.limit, total
                )
                return PageResult(items=items, meta=build_meta(total, page.page, page.limit))
            except Exception as exc:
                _handle_service_error(session, exc)

    def nearby(
        self,
        latitude: Any,
        longitude: Any,
        radius_km: Any = DEFAULT_RADIUS_KM,
        page: Optional[PageRequest] = None,
    ) -> PageResult:
        lat, lng = validate_coordinates(latitude, longitude)
        radius = validate_radius(radius_km)
        return self.list(IssueFilter(latitude=lat, longitude=lng, radius_km=radius), page)

    def mine(
        self, owner_id: str, issue_filter: Optional[IssueFilter] = None, page: Optional[PageRequest] = None
    ) -> PageResult:
        # the owner always comes from the caller's identity, never the query
        issue_filter = (issue_filter or IssueFilter()).with_owner(owner_id)
        return self.list(issue_filter, page)

    def admin_list(
        self, actor_role, issue_filter: Optional[IssueFilter] = None, page: Optional[PageRequest] = None
    ) -> PageResult:
        ensure_can_view_admin_data(actor_role)
        return self.list(issue_filter, page)

    def get(self, issue_id: str) -> Issue:
        with self.db.session() as session:
            try:
                return _load_issue(session, issue_id)
            except Exception as exc:
                _handle_service_error(session, exc)

    def stats(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Count issues by status and priority, optionally for one owner.

        Every status and priority is present in the result, zero when unused.
        """
        with self.db.session() as session:
            try:
                return _issue_stats(session, owner_id)
            except Exception as exc:
                _handle_service_error(session, exc)

    def system_stats(self, actor_role) -> Dict[str, Any]:
        ensure_can_view_admin_data(actor_role)
        with self.db.session() as session:
            try:
                issues = _issue_stats(session, None)
                users = {role.value.lower(): 0 for role in Role}
                for role, count in session.query(User.role, func.count(User.id)).group_by(User.role):
                    users[role.lower()] = count
                total_users = sum(users.values())
                by_status = issues["by_status"]
                return {
                    "issues": issues,
                    "users": {
                        "total": total_users,
                        "admins": users["admin"],
                        "regular_users": users["user"],
                    },
                    "summary": {
                        "total_issues": issues["total"],
                        "total_users": total_users,
                        "pending_issues": by_status["new"] + by_status["in_progress"],
                        "resolved_issues": by_status["resolved"],
                    },
                }
            except Exception as exc:
                _handle_service_error(session, exc)


class IssueMutationService:
    """Create, update, delete and triage issues behind the authorization guard."""

    def __init__(self, db: Database, config: Optional[Settings] = None):
        self.db = db
        self.config = config or default_settings

    @property
    def strict_transitions(self) -> bool:
        return self.config.strict_status_transitions

    def create(self, owner_id: str, fields: Mapping[str, Any]) -> Issue:
        """Persist a new issue owned by ``owner_id``.

        Priority defaults to MEDIUM and status always starts at NEW.
        """
        cleaned = self._validate_fields(fields)
        logger.info("create issue user=%s title=%r", owner_id, cleaned["title"])
        with self.db.session() as session:
            try:
                _load_user(session, owner_id)
                images = cleaned.pop("images", [])
                priority = cleaned.pop("priority", Priority.MEDIUM)
                issue = Issue(
                    user_id=owner_id,
                    priority=priority.value,
                    status=INITIAL_STATUS.value,
                    **cleaned,
                )
                issue.set_images(images)
                session.add(issue)
                session.commit()
                ISSUE_CREATED_COUNTER.inc()
                logger.info("created issue id=%s user=%s", issue.id, owner_id)
                return _load_issue(session, issue.id, refresh=True)
            except Exception as exc:
                _handle_service_error(session, exc)

    def update(self, actor_id: str, actor_role, issue_id: str, fields: Mapping[str, Any]) -> Issue:
        """Apply the fields the actor's role may change.

        Everything is validated before anything is written. A ``status`` key must
        be a valid status for every caller but is applied for admins only.
        """
        logger.info("update issue id=%s actor=%s", issue_id, actor_id)
        with self.db.session() as session:
            try:
                issue = _load_issue(session, issue_id)
                ensure_can_mutate(actor_id, actor_role, issue.user_id, "update")

                # an unknown status is rejected for everyone, applied for admins only
                requested_status = None
                if fields.get("status") is not None:
                    requested_status = parse_status(fields["status"])

                allowed = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
                cleaned = self._validate_fields(allowed, current=issue)
                new_status = None
                if requested_status is not None and can_change_status(actor_role):
                    new_status = transition(
                        issue.status, requested_status, actor_role, strict=self.strict_transitions
                    )

                images = cleaned.pop("images", None)
                priority = cleaned.pop("priority", None)
                for key, value in cleaned.items():
                    setattr(issue, key, value)
                if images is not None:
                    issue.set_images(images)
                if priority is not None:
                    issue.priority = priority.value
                if new_status is not None:
                    issue.status = new_status.value
                issue.updated_at = datetime.utcnow()

                session.commit()
                ISSUE_UPDATED_COUNTER.inc()
                if new_status is not None:
                    STATUS_CHANGE_COUNTER.labels(status=new_status.value).inc()
                logger.info("updated issue id=%s fields=%s", issue_id, sorted(allowed))
                return _load_issue(session, issue_id, refresh=True)
            except Exception as exc:
                _handle_service_error(session, exc)

    def delete(self, actor_id: str, actor_role, issue_id: str) -> DeletedRef:
        """Remove the issue and return what the storage collaborator must clean up."""
        logger.info("delete issue id=%s actor=%s", issue_id, actor_id)
        with self.db.session() as session:
            try:
                issue = _load_issue(session, issue_id)
                ensure_can_mutate(actor_id, actor_role, issue.user_id, "delete")
                deleted = DeletedRef(issue_id=issue.id, images=list(issue.images))
                session.delete(issue)
                session.commit()
                ISSUE_DELETED_COUNTER.inc()
                logger.info("deleted issue id=%s images=%d", issue_id, len(deleted.images))
                return deleted
            except Exception as exc:
                _handle_service_error(session, exc)

    def change_status(self, actor_role, issue_id: str, requested: Any) -> Issue:
        # role and value are checked before the issue is looked up
        ensure_can_change_status(actor_role)
        parse_status(requested)
        logger.info("change status issue id=%s status=%s", issue_id, requested)
        with self.db.session() as session:
            try:
                issue = _load_issue(session, issue_id)
                new_status = apply_status(
                    issue, requested, actor_role, strict=self.strict_transitions
                )
                session.commit()
                STATUS_CHANGE_COUNTER.labels(status=new_status.value).inc()
                return _load_issue(session, issue_id, refresh=True)
            except Exception as exc:
                _handle_service_error(session, exc)

    def bulk_change_status(self, actor_role, issue_ids: Iterable[str], requested: Any) -> BulkStatusResult:
        """Change the status of several issues, reporting each outcome separately."""
        ensure_can_change_status(actor_role)
        status = parse_status(requested)
        unique_ids = list(dict.fromkeys(issue_ids))
        if not unique_ids:
            raise ValidationError(
                "Issue IDs array is required",
                [field_error("issueIds", "Must contain at least one issue id", [])],
            )

        result = BulkStatusResult(status=status)
        for issue_id in unique_ids:
            try:
                result.succeeded.append(self.change_status(actor_role, issue_id, status))
            except ServiceError as exc:
                result.failed.append({"issue_id": issue_id, "code": exc.code, "message": exc.message})
        logger.info(
            "bulk status %s: %d/%d updated", status.value, len(result.succeeded), result.total
        )
        return result

    def _validate_fields(
        self, fields: Mapping[str, Any], current: Optional[Issue] = None
    ) -> Dict[str, Any]:
        """Check and normalise issue fields, collecting every failure.

        With ``current`` unset all required fields must be present (create);
        otherwise only the supplied keys are checked (update).
        """
        creating = current is None
        cleaned: Dict[str, Any] = {}
        errors: List[Tuple[Type[ValidationError], Dict[str, Any]]] = []

        if creating or "title" in fields:
            title = fields.get("title")
            if not isinstance(title, str) or not (
                TITLE_MIN_LENGTH <= len(title.strip()) <= TITLE_MAX_LENGTH
            ):
                errors.append((ValidationError, field_error(
                    "title", "Title must be between 5 and 100 characters", title
                )))
            else:
                cleaned["title"] = title.strip()

        if "description" in fields:
            description = fields["description"]
            if description is not None and not isinstance(description, str):
                errors.append((ValidationError, field_error(
                    "description", "Description must be text", description
                )))
            elif description is not None and len(description.strip()) > DESCRIPTION_MAX_LENGTH:
                errors.append((ValidationError, field_error(
                    "description", "Description cannot exceed 500 characters", description
                )))
            else:
                cleaned["description"] = description.strip() or None if description else None

        if "category" in fields:
            category = fields["category"]
            if category is not None and not isinstance(category, str):
                errors.append((ValidationError, field_error("category", "Category must be text", category)))
            elif category and category.strip() and not (
                CATEGORY_MIN_LENGTH <= len(category.strip()) <= CATEGORY_MAX_LENGTH
            ):
                errors.append((ValidationError, field_error(
                    "category", "Category must be between 2 and 50 characters", category
                )))
            else:
                cleaned["category"] = category.strip() or None if category else None

        if "location" in fields:
            location = fields["location"]
            if location is not None and (
                not isinstance(location, str) or len(location.strip()) > LOCATION_MAX_LENGTH
            ):
                errors.append((ValidationError, field_error(
                    "location", "Location must be text of at most 255 characters", location
                )))
            else:
                cleaned["location"] = location.strip() or None if location else None

        if creating or "latitude" in fields or "longitude" in fields:
            latitude = fields.get("latitude", None if creating else current.latitude)
            longitude = fields.get("longitude", None if creating else current.longitude)
            try:
                cleaned["latitude"], cleaned["longitude"] = validate_coordinates(latitude, longitude)
            except InvalidCoordinate as exc:
                errors.extend((InvalidCoordinate, detail) for detail in exc.details or [])

        if fields.get("priority") is not None:
            try:
                cleaned["priority"] = parse_enum(Priority, fields["priority"], "priority")
            except InvalidEnumValue as exc:
                errors.extend((InvalidEnumValue, detail) for detail in exc.details or [])

        if "images" in fields:
            images = fields["images"] if fields["images"] is not None else []
            if (
                not isinstance(images, (list, tuple))
                or len(images) > MAX_IMAGES
                or not all(isinstance(url, str) and url.strip() for url in images)
            ):
                errors.append((ValidationError, field_error(
                    "images", "Images must be a list of at most 3 non-empty references", images
                )))
            else:
                cleaned["images"] = [url.strip() for url in images]

        if errors:
            kinds = {kind for kind, _ in errors}
            error_cls = kinds.pop() if len(kinds) == 1 else ValidationError
            raise error_cls("Validation failed", [detail for _, detail in errors])
        return cleaned


def _user_summary(user: User, issues_count: int) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "issues_count": issues_count,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


class UserAdminService:
    """Admin management of user accounts.

    Every operation is guarded by ``ensure_can_view_admin_data``. Admins cannot
    change their own role or delete their own account through these methods.
    """

    def __init__(self, db: Database):
        self.db = db

    def list(
        self,
        actor_role,
        role: Any = None,
        search: Optional[str] = None,
        page: Optional[PageRequest] = None,
    ) -> PageResult:
        """Return one page of users with their issue counts, newest first."""
        ensure_can_view_admin_data(actor_role)
        role_filter = parse_enum(Role, role, "role") if role else None
        page = page or PageRequest()
        with self.db.session() as session:
            try:
                clauses = []
                if role_filter is not None:
                    clauses.append(User.role == role_filter.value)
                if search:
                    clauses.append(
                        or_(ilike_contains(User.name, search), ilike_contains(User.email, search))
                    )
                total = session.query(User).filter(*clauses).count()
                items = []
                if page.offset < total:
                    rows = (
                        session.query(User, func.count(Issue.id))
                        .outerjoin(Issue, Issue.user_id == User.id)
                        .filter(*clauses)
                        .group_by(User.id)
                        .order_by(User.created_at.desc(), User.id.desc())
                        .offset(page.offset)
                        .limit(page.limit)
                        .all()
                    )
                    items = [_user_summary(user, count) for user, count in rows]
                return PageResult(items=items, meta=build_meta(total, page.page, page.limit))
            except Exception as exc:
                _handle_service_error(session, exc)

    def get(self, actor_role, user_id: str) -> Dict[str, Any]:
        """Return a user's profile with issue counts by status."""
        ensure_can_view_admin_data(actor_role)
        with self.db.session() as session:
            try:
                user = _load_user(session, user_id)
                stats = _issue_stats(session, user_id)
                return {
                    "id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "role": user.role,
                    "member_since": user.created_at,
                    "total_issues": stats["total"],
                    "issue_statistics": stats["by_status"],
                }
            except Exception as exc:
                _handle_service_error(session, exc)

    def update_role(self, actor_id: str, actor_role, user_id: str, requested: Any) -> Dict[str, Any]:
        ensure_can_view_admin_data(actor_role)
        new_role = parse_enum(Role, requested, "role")
        if user_id == actor_id:
            raise ValidationError("You cannot change your own role")
        logger.info("change role user=%s role=%s actor=%s", user_id, new_role.value, actor_id)
        with self.db.session() as session:
            try:
                user = _load_user(session, user_id)
                user.role = new_role.value
                session.commit()
                ROLE_CHANGE_COUNTER.labels(role=new_role.value).inc()
                issues_count = (
                    session.query(func.count(Issue.id)).filter(Issue.user_id == user_id).scalar()
                )
                return _user_summary(user, issues_count)
            except Exception as exc:
                _handle_service_error(session, exc)

    def delete(self, actor_id: str, actor_role, user_id: str) -> DeletedUserRef:
        """Remove a user and, by cascade, every issue they reported.

        The image references of those issues are returned so the caller can
        hand them to the storage collaborator.
        """
        ensure_can_view_admin_data(actor_role)
        if user_id == actor_id:
            raise ValidationError("You cannot delete your own account through admin panel")
        logger.info("delete user id=%s actor=%s", user_id, actor_id)
        with self.db.session() as session:
            try:
                user = _load_user(session, user_id)
                deleted_issues = (
                    session.query(func.count(Issue.id)).filter(Issue.user_id == user_id).scalar()
                )
                images = [
                    url
                    for (url,) in session.query(IssueImage.url)
                    .join(Issue, IssueImage.issue_id == Issue.id)
                    .filter(Issue.user_id == user_id)
                    .order_by(Issue.id, IssueImage.position)
                ]
                session.delete(user)
                session.commit()
                USER_DELETED_COUNTER.inc()
                logger.info(
                    "deleted user id=%s issues=%d images=%d", user_id, deleted_issues, len(images)
                )
                return DeletedUserRef(user_id=user_id, deleted_issues=deleted_issues, images=images)
            except Exception as exc:
                _handle_service_error(session, exc)
