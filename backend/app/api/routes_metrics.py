import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.dependencies import get_metrics
from app.infra.metrics import Metrics

router = APIRouter()


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1]
    return None


@router.get("/metrics")
async def metrics_endpoint(request: Request, metrics_client: Metrics = Depends(get_metrics)) -> Response:
    if not metrics_client.enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")

    app_settings = getattr(request.app.state, "app_settings", None)
    token = getattr(app_settings, "metrics_token", None) if app_settings else None
    if app_settings is not None and app_settings.app_env == "prod":
        if not token:
            raise HTTPException(status_code=500, detail="Metrics token misconfigured")
        provided = _bearer_token(request)
        if not provided or not secrets.compare_digest(provided, token):
            raise HTTPException(status_code=401, detail="Unauthorized")

    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)
