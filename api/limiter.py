"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that apply per-route limits with @limiter.limit() (login, register, desktop
auth).

A single shared instance keeps all routes on the same in-memory counter
store. Separate instances per module would each count on their own and the
limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
