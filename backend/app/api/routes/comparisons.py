"""Framework comparison routes."""

import structlog
from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_orchestrator
from app.api.errors import from_service_error
from app.core.rate_limit import STANDARD_RATE_LIMIT, limiter
from app.core.security import get_current_user
from app.models.auth import AuthenticatedUser
from app.models.comparison import ComparisonCreateRequest, ComparisonResponse
from app.services.comparison.orchestrator import ComparisonOrchestrator
from app.services.exceptions import ServiceError

router = APIRouter(prefix="/comparisons", tags=["comparisons"])
logger = structlog.get_logger(__name__)


@router.post(
    "",
    response_model=ComparisonResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(STANDARD_RATE_LIMIT)
async def create_comparison(
    request: Request,  # Required for rate limiter
    body: ComparisonCreateRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
) -> ComparisonResponse:
    """Compare a user framework against an expert framework.

    Both frameworks must have completed AI processing.

    Errors:
        400: Either framework has not completed AI processing
        404: Framework not found
        409: A comparison for the same pair is already pending or in process
    """
    try:
        job = await orchestrator.start(user, body.user_framework_id, body.expert_framework_id)
    except ServiceError as e:
        logger.warning(
            "comparison_start_failed",
            user_framework_id=body.user_framework_id,
            expert_framework_id=body.expert_framework_id,
            error_code=e.code,
        )
        raise from_service_error(e) from None
    return ComparisonResponse(data=job)


@router.get(
    "/{comparison_id}",
    response_model=ComparisonResponse,
    response_model_by_alias=True,
)
@limiter.limit(STANDARD_RATE_LIMIT)
async def get_comparison(
    request: Request,  # Required for rate limiter
    comparison_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: ComparisonOrchestrator = Depends(get_orchestrator),
) -> ComparisonResponse:
    """Get a comparison owned by the current user."""
    try:
        job = await orchestrator.get(comparison_id, user)
    except ServiceError as e:
        raise from_service_error(e) from None
    return ComparisonResponse(data=job)
