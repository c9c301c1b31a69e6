from fastapi import APIRouter, Depends, Response

from omnidrop import __version__
from omnidrop.dependencies.app_deps import get_metrics
from omnidrop.metrics import PrometheusMetrics
from omnidrop.schemas.common_schemas import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


@router.get("/metrics", include_in_schema=False)
async def metrics_endpoint(metrics: PrometheusMetrics = Depends(get_metrics)) -> Response:
    return Response(content=metrics.render(), media_type=metrics.content_type)
