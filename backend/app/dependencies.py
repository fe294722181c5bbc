from fastapi import Request

from app.api.identity import get_principal
from app.infra.db import get_db_session
from app.infra.metrics import Metrics, metrics

__all__ = ["get_db_session", "get_metrics", "get_principal"]


def get_metrics(request: Request) -> Metrics:
    return getattr(request.app.state, "metrics", None) or metrics
