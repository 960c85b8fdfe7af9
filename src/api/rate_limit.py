"""Per-user limits on the endpoints that call the generation provider."""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

# Text actions (setting, characters, draft) and image actions are limited separately
GENERATION_RATE_LIMIT = os.getenv("GENERATION_RATE_LIMIT", "10/minute")
IMAGE_RATE_LIMIT = os.getenv("IMAGE_RATE_LIMIT", "20/minute")


def story_owner_key(request) -> str:
    """Bucket requests by the X-User-Id owner, falling back to client IP."""
    return request.headers.get("X-User-Id") or get_remote_address(request)


limiter = Limiter(key_func=story_owner_key)
