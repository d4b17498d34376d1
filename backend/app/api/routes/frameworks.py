"""Framework AI processing routes.

Starts AI processing for a user or expert framework document and exposes
its persisted processing state, which clients re-read after reconnecting
their notification socket.
"""

import structlog
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_processing_service, get_subject_kind
from app.api.errors import from_service_error
from app.core.rate_limit import STANDARD_RATE_LIMIT, STATUS_CHECK_RATE_LIMIT, limiter
from app.core.security import get_current_user
from app.models.auth import AuthenticatedUser
from app.models.processing import LiveStatusResponse, ProcessingJobResponse, SubjectKind
from app.services.exceptions import ServiceError
from app.services.processing.service import FrameworkProcessingService

router = APIRouter(prefix="/frameworks", tags=["frameworks"])
logger = structlog.get_logger(__name__)


@router.post(
    "/{kind}/{framework_id}/ai-processing",
    response_model=ProcessingJobResponse,
    response_model_by_alias=True,
)
@limiter.limit(STANDARD_RATE_LIMIT)
async def start_ai_processing(
    request: Request,  # Required for rate limiter
    framework_id: str,
    kind: SubjectKind = Depends(get_subject_kind),
    user: AuthenticatedUser = Depends(get_current_user),
    service: FrameworkProcessingService = Depends(get_processing_service),
) -> ProcessingJobResponse:
    """Send a framework document to the AI service.

    Progress is pushed to the owner's notification sockets; the final
    state can always be re-read with the GET endpoint.

    Errors:
        404: Framework not found, or stored file missing
        409: A non-failed AI job already exists for this framework
        413 / 415: File rejected (locally or by the AI service)
        502 / 503: AI service error or unreachable
    """
    try:
        job = await service.start(kind, framework_id, user)
    except ServiceError as e:
        logger.warning(
            "ai_processing_start_failed",
            kind=kind.value,
            framework_id=framework_id,
            error_code=e.code,
            error=e.message,
        )
        raise from_service_error(e) from None
    return ProcessingJobResponse(data=job)


@router.get(
    "/{kind}/{framework_id}/ai-processing",
    response_model=ProcessingJobResponse,
    response_model_by_alias=True,
)
@limiter.limit(STANDARD_RATE_LIMIT)
async def get_ai_processing(
    request: Request,  # Required for rate limiter
    framework_id: str,
    kind: SubjectKind = Depends(get_subject_kind),
    user: AuthenticatedUser = Depends(get_current_user),
    service: FrameworkProcessingService = Depends(get_processing_service),
) -> ProcessingJobResponse:
    """Get the persisted AI processing state of a framework."""
    try:
        job = await service.get_job(kind, framework_id, user)
    except ServiceError as e:
        raise from_service_error(e) from None
    return ProcessingJobResponse(data=job)


@router.get(
    "/{kind}/{framework_id}/ai-processing/live-status",
    response_model=LiveStatusResponse,
    response_model_by_alias=True,
)
@limiter.limit(STATUS_CHECK_RATE_LIMIT)
async def get_live_status(
    request: Request,  # Required for rate limiter
    framework_id: str,
    kind: SubjectKind = Depends(get_subject_kind),
    user: AuthenticatedUser = Depends(get_current_user),
    service: FrameworkProcessingService = Depends(get_processing_service),
) -> LiveStatusResponse:
    """Ask the AI service for the job's current status.

    Read-only: nothing is persisted and no notification is sent.
    """
    try:
        live = await service.check_status(kind, framework_id, user)
    except ServiceError as e:
        raise from_service_error(e) from None
    return LiveStatusResponse(data=live)
