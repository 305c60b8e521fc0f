"""
Rate limiting for the public v1 API
Sliding-window request counting per client address
"""

import logging
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from functools import wraps
from typing import Deque, Dict, Optional, Tuple

from flask import jsonify, request

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRule:
    """Rate limit rule configuration"""
    requests: int  # Number of requests
    window: int  # Time window in seconds


class RateLimiter:
    """Sliding-window limiter keyed by client id"""

    def __init__(self, requests_per_minute: int = 60, enabled: bool = True):
        self.enabled = enabled
        self.rules: Dict[str, RateLimitRule] = {
            "default": RateLimitRule(requests=requests_per_minute, window=60),
        }
        self.history: Dict[str, Deque[float]] = defaultdict(deque)
        self.lock = threading.Lock()
        self.stats = {"total_requests": 0, "blocked_requests": 0}

    def add_rule(self, name: str, requests: int, window: int) -> None:
        self.rules[name] = RateLimitRule(requests=requests, window=window)

    def check_rate_limit(self, client_id: str, rule_name: str = "default") -> Tuple[bool, Dict]:
        """
        Check if request is within rate limit
        Returns (allowed, info)
        """
        rule = self.rules.get(rule_name, self.rules["default"])
        now = time.time()

        with self.lock:
            self.stats["total_requests"] += 1
            timestamps = self.history[f"{rule_name}:{client_id}"]
            while timestamps and timestamps[0] <= now - rule.window:
                timestamps.popleft()

            if len(timestamps) >= rule.requests:
                self.stats["blocked_requests"] += 1
                retry_after = max(1, int(timestamps[0] + rule.window - now))
                return False, {
                    "error": "Rate limit exceeded",
                    "limit": rule.requests,
                    "window": rule.window,
                    "retry_after": retry_after,
                }

            timestamps.append(now)
            return True, {
                "limit": rule.requests,
                "remaining": rule.requests - len(timestamps),
                "reset": int(timestamps[0] + rule.window),
            }

    def reset_client(self, client_id: Optional[str] = None) -> None:
        """Forget history for one client, or for everyone"""
        with self.lock:
            if client_id is None:
                self.history.clear()
                return
            for key in [k for k in self.history if k.endswith(f":{client_id}")]:
                del self.history[key]

    def get_stats(self) -> Dict:
        """Get rate limiter statistics"""
        with self.lock:
            total = self.stats["total_requests"]
            return {
                "enabled": self.enabled,
                "total_requests": total,
                "blocked_requests": self.stats["blocked_requests"],
                "active_clients": len(self.history),
                "block_rate": (self.stats["blocked_requests"] / total * 100) if total else 0,
            }


def rate_limit(limiter: RateLimiter, rule_name: str = "default"):
    """Decorator for rate limiting Flask routes"""

    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            if not limiter.enabled:
                return f(*args, **kwargs)

            client_id = request.remote_addr or "unknown"
            allowed, info = limiter.check_rate_limit(client_id, rule_name)

            if not allowed:
                logger.warning(f"Rate limit exceeded for {client_id} on {request.path}")
                response = jsonify(info)
                response.status_code = 429  # Too Many Requests
                response.headers["Retry-After"] = str(info["retry_after"])
                return response

            response = f(*args, **kwargs)
            if hasattr(response, "headers"):
                response.headers["X-RateLimit-Limit"] = str(info["limit"])
                response.headers["X-RateLimit-Remaining"] = str(info["remaining"])
                response.headers["X-RateLimit-Reset"] = str(info["reset"])
            return response

        return wrapped

    return decorator
