import logging

from slowapi import Limiter
from slowapi.util import get_remote_address

from readhub.core.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

limiter = Limiter(key_func=get_remote_address, storage_uri=_settings.RATE_LIMIT_STORAGE_URI)
logger.debug("Rate limiter storage: %s", _settings.RATE_LIMIT_STORAGE_URI.split("://", 1)[0])

RATE_LIMITS = {
    "webhook_paystack": _settings.WEBHOOK_RATE_LIMIT,
}
