from slowapi import Limiter
from slowapi.util import get_remote_address

from src.release_guard.core.config import settings

# Rollback executions per client IP; analysis endpoints stay unlimited
limiter = Limiter(key_func=get_remote_address)
rollback_limit = settings.ROLLBACK_RATE_LIMIT
