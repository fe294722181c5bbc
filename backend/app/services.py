from __future__ import annotations

from dataclasses import dataclass

from app.infra.metrics import Metrics, configure_metrics


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(metrics=metrics_client)
