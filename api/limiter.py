"""
api/limiter.py -- The process-wide slowapi rate limiter.

Routes apply limits with @limiter.limit(); api/main.py mounts it as
SlowAPIMiddleware. Counters are keyed by client address and live in
Settings.rate_limit_storage_uri ("memory://" counts per worker process; point
it at redis:// when running several workers).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)
