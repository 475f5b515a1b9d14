"""Per-minute burst guard for the refresh endpoint (slowapi)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from healthdash.config import get_settings

settings = get_settings()

limiter = Limiter(key_func=get_remote_address, enabled=settings.burst_protection_enabled)

BURST_LIMIT = f"{settings.burst_limit_per_minute}/minute"
