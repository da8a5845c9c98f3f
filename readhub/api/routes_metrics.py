import hmac

from fastapi import APIRouter, Header, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from readhub.api.dependencies import SettingsDep
from readhub.core.exceptions import UnauthorizedError

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
def metrics_endpoint(settings: SettingsDep, authorization: str = Header(None)) -> Response:
    if settings.METRICS_TOKEN:
        expected = f"Bearer {settings.METRICS_TOKEN}"
        if not authorization or not hmac.compare_digest(authorization, expected):
            raise UnauthorizedError("Metrics token required")
    # Counters are incremented at event points; just expose the registry.
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
