import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from readhub.core.config import BaseAppSettings

logger = logging.getLogger(__name__)

_initialized = False


def init_monitoring(settings: BaseAppSettings) -> None:
    global _initialized
    if _initialized:
        return
    if settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.0,
            environment=settings.ENV,
            release=f"readhub-backend@{settings.ENV}",
        )
        logger.info("Sentry initialized")
    _initialized = True


def report_exception(exc: BaseException) -> None:
    """Forward an exception to Sentry; no-op when Sentry was never initialized."""
    sentry_sdk.capture_exception(exc)
