from fastapi import APIRouter, Response, status

from app.config import is_production_mode, settings
from app.db.session import SessionLocal
from app.schemas.health import HealthResponse, ReadinessDependency, ReadinessResponse
from app.services.readiness_service import (
    database_dependency_status,
    payment_provider_dependency_status,
    safe_dependency_status,
)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    summary="Readiness check",
    response_model=ReadinessResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ReadinessResponse}},
)
def readiness(response: Response) -> ReadinessResponse:
    dependencies = [
        ReadinessDependency(
            name="database",
            status=safe_dependency_status(
                "database", lambda: database_dependency_status(SessionLocal)
            ),
        )
    ]

    # Outside production a missing access token only disables PIX creation.
    if is_production_mode():
        dependencies.append(
            ReadinessDependency(
                name="payment_provider",
                status=safe_dependency_status(
                    "payment_provider",
                    lambda: payment_provider_dependency_status(settings.mp_access_token),
                ),
            )
        )

    readiness_status = "ok" if all(dep.status == "ok" for dep in dependencies) else "degraded"
    if readiness_status != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(status=readiness_status, dependencies=dependencies)
