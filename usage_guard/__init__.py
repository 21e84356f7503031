from __future__ import annotations  # Re-export usage_guard public API

from .rate_limiter import RateLimiter
from .usage_guard import QuotaStatus, UsageGuard, estimate_audio_tokens, session_limit_warning

__all__ = ["QuotaStatus", "RateLimiter", "UsageGuard", "estimate_audio_tokens", "session_limit_warning"]
