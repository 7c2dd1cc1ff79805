"""
api/limiter.py -- Shared slowapi rate limiter.

Register and login are the brute-force surface, so they carry a per-IP limit
taken from LOGIN_RATE_LIMIT. Every other route is unlimited.

One module-level instance: api/main.py mounts it (app.state.limiter plus
SlowAPIMiddleware) and api/routes/v1/auth.py decorates routes with it.
Separate instances would keep separate counters.

Counters live in process memory, reset on restart and are not shared between
worker processes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", default_limits=[])
