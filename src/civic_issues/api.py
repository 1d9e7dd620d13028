"""FastAPI application exposing issue reporting and triage endpoints."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import Actor, get_current_actor, require_admin
from .config import Settings, settings
from .database import Database
from .errors import ServiceError
from .filters import compile_filter
from .guard import ensure_can_view_stats
from .pagination import PageResult, compile_page
from .schemas import (
    ApiResponse,
    BulkStatusOut,
    BulkStatusUpdate,
    DeletedIssue,
    DeletedUser,
    ErrorResponse,
    IssueCreate,
    IssueOut,
    IssueStats,
    IssueUpdate,
    PageMetaOut,
    PaginatedResponse,
    RoleUpdate,
    StatusUpdate,
    SystemStats,
    UserDetails,
    UserOut,
)
from .services import IssueMutationService, IssueQueryService, UserAdminService
from .storage import ImageStorage, cleanup_images


logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
MUTATION_RATE_LIMIT = settings.mutation_rate_limit

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}

router = APIRouter(tags=["Issues"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_query_service(db: Database = Depends(get_database)) -> IssueQueryService:
    return IssueQueryService(db)


def get_mutation_service(
    request: Request, db: Database = Depends(get_database)
) -> IssueMutationService:
    return IssueMutationService(db, request.app.state.settings)


def get_user_service(db: Database = Depends(get_database)) -> UserAdminService:
    return UserAdminService(db)


def get_storage(request: Request) -> ImageStorage:
    return request.app.state.storage


def _paginated(result: PageResult, message: str) -> PaginatedResponse[IssueOut]:
    return PaginatedResponse[IssueOut](
        message=message,
        data=[IssueOut.model_validate(issue) for issue in result.items],
        pagination=PageMetaOut.model_validate(result.meta),
    )


def _error_response(status_code: int, message: str, code: str, errors=None) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, errors=errors)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(by_alias=True, exclude_none=True)),
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "%s %s rejected: %s %s", request.method, request.url.path, exc.code, exc.message
        )
    return _error_response(exc.status_code, exc.message, exc.code, exc.details)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return _error_response(exc.status_code, str(exc.detail), code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append(
            {
                "field": ".".join(location) or "body",
                "message": error.get("msg", "Invalid value"),
                "value": error.get("input"),
            }
        )
    return _error_response(400, "Validation failed", "VALIDATION_ERROR", errors)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Internal server error", "INTERNAL_ERROR")


@router.get("/issues", response_model=PaginatedResponse[IssueOut])
def list_issues(request: Request, service: IssueQueryService = Depends(get_query_service)):
    """Return issues matching the query filters, newest first."""
    params = request.query_params
    result = service.list(
        compile_filter(params), compile_page(params.get("page"), params.get("limit"))
    )
    return _paginated(result, "Data retrieved successfully")


@router.get("/issues/nearby", response_model=PaginatedResponse[IssueOut])
def list_nearby_issues(request: Request, service: IssueQueryService = Depends(get_query_service)):
    """Return issues inside the bounding box around a point."""
    params = request.query_params
    result = service.nearby(
        params.get("latitude"),
        params.get("longitude"),
        params.get("radius") or 5,
        compile_page(params.get("page"), params.get("limit")),
    )
    return _paginated(result, "Data retrieved successfully")


@router.get("/issues/my", response_model=PaginatedResponse[IssueOut])
def list_my_issues(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: IssueQueryService = Depends(get_query_service),
):
    """Return the caller's own issues."""
    params = request.query_params
    result = service.mine(
        actor.id,
        compile_filter(params),
        compile_page(params.get("page"), params.get("limit")),
    )
    return _paginated(result, "Data retrieved successfully")


@router.get("/issues/stats", response_model=ApiResponse[IssueStats])
def get_issue_stats(
    user_id: Optional[str] = Query(None, alias="userId"),
    actor: Actor = Depends(get_current_actor),
    service: IssueQueryService = Depends(get_query_service),
):
    """Return issue counts by status and priority."""
    ensure_can_view_stats(actor.id, actor.role, user_id)
    stats = service.stats(user_id)
    return ApiResponse[IssueStats](
        message="Data retrieved successfully", data=IssueStats.model_validate(stats)
    )


@router.get("/issues/{issue_id}", response_model=ApiResponse[IssueOut])
def get_issue(issue_id: str, service: IssueQueryService = Depends(get_query_service)):
    issue = service.get(issue_id)
    return ApiResponse[IssueOut](
        message="Data retrieved successfully", data=IssueOut.model_validate(issue)
    )


@router.post("/issues", response_model=ApiResponse[IssueOut], status_code=201)
@limiter.limit(MUTATION_RATE_LIMIT)
def create_issue(
    request: Request,
    payload: IssueCreate,
    actor: Actor = Depends(get_current_actor),
    service: IssueMutationService = Depends(get_mutation_service),
):
    """Report a new issue owned by the caller."""
    issue = service.create(actor.id, payload.model_dump(exclude_unset=True))
    return ApiResponse[IssueOut](
        message="Issue reported successfully", data=IssueOut.model_validate(issue)
    )


@router.put("/issues/{issue_id}", response_model=ApiResponse[IssueOut])
@limiter.limit(MUTATION_RATE_LIMIT)
def update_issue(
    request: Request,
    issue_id: str,
    payload: IssueUpdate,
    actor: Actor = Depends(get_current_actor),
    service: IssueMutationService = Depends(get_mutation_service),
):
    issue = service.update(actor.id, actor.role, issue_id, payload.model_dump(exclude_unset=True))
    return ApiResponse[IssueOut](
        message="Issue updated successfully", data=IssueOut.model_validate(issue)
    )


@router.delete("/issues/{issue_id}", response_model=ApiResponse[DeletedIssue])
@limiter.limit(MUTATION_RATE_LIMIT)
def delete_issue(
    request: Request,
    issue_id: str,
    actor: Actor = Depends(get_current_actor),
    service: IssueMutationService = Depends(get_mutation_service),
    storage: ImageStorage = Depends(get_storage),
):
    """Delete an issue, then try to remove its images from storage."""
    deleted = service.delete(actor.id, actor.role, issue_id)
    # the issue is gone whatever happens to the remote images
    cleanup_images(storage, deleted.images)
    return ApiResponse[DeletedIssue](
        message="Issue deleted successfully",
        data=DeletedIssue(deleted_issue_id=deleted.issue_id),
    )


@router.patch("/issues/{issue_id}/status", response_model=ApiResponse[IssueOut])
@limiter.limit(MUTATION_RATE_LIMIT)
def change_issue_status(
    request: Request,
    issue_id: str,
    payload: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: IssueMutationService = Depends(get_mutation_service),
):
    """Move an issue to a new status (admins only)."""
    issue = service.change_status(actor.role, issue_id, payload.status)
    return ApiResponse[IssueOut](
        message="Issue status updated successfully", data=IssueOut.model_validate(issue)
    )


@admin_router.get("/issues", response_model=PaginatedResponse[IssueOut])
def admin_list_issues(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: IssueQueryService = Depends(get_query_service),
):
    params = request.query_params
    result = service.admin_list(
        actor.role,
        compile_filter(params),
        compile_page(params.get("page"), params.get("limit")),
    )
    return _paginated(result, "Data retrieved successfully")


@admin_router.get("/stats", response_model=ApiResponse[SystemStats])
def admin_system_stats(
    actor: Actor = Depends(get_current_actor),
    service: IssueQueryService = Depends(get_query_service),
):
    stats = service.system_stats(actor.role)
    return ApiResponse[SystemStats](
        message="System statistics retrieved successfully",
        data=SystemStats.model_validate(stats),
    )


@admin_router.patch("/issues/bulk-status", response_model=ApiResponse[BulkStatusOut])
@limiter.limit(MUTATION_RATE_LIMIT)
def admin_bulk_status(
    request: Request,
    payload: BulkStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: IssueMutationService = Depends(get_mutation_service),
):
    """Change the status of many issues at once, reporting each outcome."""
    result = service.bulk_change_status(actor.role, payload.issue_ids, payload.status)
    data = BulkStatusOut.model_validate(
        {
            "summary": {
                "total": result.total,
                "successful": len(result.succeeded),
                "failed": len(result.failed),
            },
            "successful": [
                {"issue_id": issue.id, "issue": IssueOut.model_validate(issue)}
                for issue in result.succeeded
            ],
            "failed": result.failed,
        }
    )
    return ApiResponse[BulkStatusOut](
        message=f"{len(result.succeeded)}/{result.total} issues updated successfully",
        data=data,
    )


@admin_router.get("/users", response_model=PaginatedResponse[UserOut])
def admin_list_users(
    request: Request,
    actor: Actor = Depends(get_current_actor),
    service: UserAdminService = Depends(get_user_service),
):
    """Return users with their issue counts, filtered by role or name/email search."""
    params = request.query_params
    result = service.list(
        actor.role,
        role=params.get("role"),
        search=(params.get("search") or "").strip() or None,
        page=compile_page(params.get("page"), params.get("limit")),
    )
    return PaginatedResponse[UserOut](
        message="Data retrieved successfully",
        data=[UserOut.model_validate(user) for user in result.items],
        pagination=PageMetaOut.model_validate(result.meta),
    )


@admin_router.get("/users/{user_id}", response_model=ApiResponse[UserDetails])
def admin_user_details(
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    service: UserAdminService = Depends(get_user_service),
):
    details = service.get(actor.role, user_id)
    return ApiResponse[UserDetails](
        message="Data retrieved successfully", data=UserDetails.model_validate(details)
    )


@admin_router.put("/users/{user_id}/role", response_model=ApiResponse[UserOut])
@limiter.limit(MUTATION_RATE_LIMIT)
def admin_update_user_role(
    request: Request,
    user_id: str,
    payload: RoleUpdate,
    actor: Actor = Depends(get_current_actor),
    service: UserAdminService = Depends(get_user_service),
):
    user = service.update_role(actor.id, actor.role, user_id, payload.role)
    return ApiResponse[UserOut](
        message=f"User role updated to {user['role']} successfully",
        data=UserOut.model_validate(user),
    )


@admin_router.delete("/users/{user_id}", response_model=ApiResponse[DeletedUser])
@limiter.limit(MUTATION_RATE_LIMIT)
def admin_delete_user(
    request: Request,
    user_id: str,
    actor: Actor = Depends(get_current_actor),
    service: UserAdminService = Depends(get_user_service),
    storage: ImageStorage = Depends(get_storage),
):
    """Delete a user and their issues, then try to remove the issues' images."""
    deleted = service.delete(actor.id, actor.role, user_id)
    cleanup_images(storage, deleted.images)
    return ApiResponse[DeletedUser](
        message="User deleted successfully",
        data=DeletedUser(deleted_user_id=deleted.user_id, deleted_issues=deleted.deleted_issues),
    )


def create_app(
    config: Optional[Settings] = None,
    database: Optional[Database] = None,
    storage: Optional[ImageStorage] = None,
) -> FastAPI:
    """Build the application with its collaborators wired in explicitly."""
    config = config or settings
    logging.getLogger("civic_issues").setLevel(config.log_level.upper())
    database = database or Database(config.database_url)
    storage = storage or ImageStorage(
        config.storage_api_url,
        api_key=config.storage_api_key,
        folder=config.storage_folder,
        timeout=config.storage_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("starting %s", config.api_title)
        database.connect()
        database.create_all()
        yield
        database.close()
        logger.info("stopped %s", config.api_title)

    app = FastAPI(title=config.api_title, lifespan=lifespan)
    app.state.settings = config
    app.state.database = database
    app.state.storage = storage
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log incoming requests and their outcomes while updating metrics."""
        logger.info("request %s %s", request.method, request.url.path)
        try:
            response = await call_next(request)
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status=str(response.status_code),
            ).inc()
            logger.info(
                "response %s %s status %s",
                request.method,
                request.url.path,
                response.status_code,
            )
            return response
        except Exception:
            REQUEST_COUNTER.labels(
                method=request.method,
                endpoint=request.url.path,
                status="500",
            ).inc()
            logger.exception(
                "error handling %s %s", request.method, request.url.path
            )
            raise

    @app.get("/health")
    def health_check():
        """Report liveness and database connectivity."""
        db_ok = database.connected and database.ping()
        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "connected" if db_ok else "disconnected",
        }

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router)
    app.include_router(admin_router)
    return app


app = create_app()
