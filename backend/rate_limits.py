from typing import Dict, NamedTuple

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address


class RatePolicy(NamedTuple):
    limit: str
    message: str


GENERAL_POLICY = RatePolicy("100 per 15 minutes", "Too many requests, please try again later")

POLICIES: Dict[str, RatePolicy] = {
    "auth": RatePolicy(
        "5 per 15 minutes",
        "Too many authentication attempts, please try again in 15 minutes",
    ),
    "password_reset": RatePolicy(
        "3 per hour",
        "Too many password reset attempts, please try again in 1 hour",
    ),
    "create": RatePolicy("10 per minute", "Too many requests, please try again in a moment"),
    "upload": RatePolicy("20 per hour", "Upload limit exceeded, please try again later"),
    "admin": RatePolicy("30 per minute", "Too many requests, please slow down"),
}


class RateLimits:
    """Per-address fixed-window limits: one window across the whole app plus one per route class."""

    def __init__(self, app):
        app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
        app.config.setdefault("RATELIMIT_STRATEGY", "fixed-window")
        app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

        self.exempt_addresses = {
            address.strip()
            for address in str(app.config.get("RATE_LIMIT_EXEMPT_IPS") or "").split(",")
            if address.strip()
        }
        self.limiter = Limiter(
            get_remote_address,
            app=app,
            application_limits=[GENERAL_POLICY.limit],
            application_limits_exempt_when=self.is_exempt,
        )

    def is_exempt(self) -> bool:
        return get_remote_address() in self.exempt_addresses

    def policy(self, name: str):
        rate_policy = POLICIES[name]
        return self.limiter.shared_limit(
            rate_policy.limit,
            scope=name,
            error_message=rate_policy.message,
            exempt_when=self.is_exempt,
            override_defaults=False,
        )


def breach_message(description) -> str:
    messages = {rate_policy.message for rate_policy in POLICIES.values()}
    return description if description in messages else GENERAL_POLICY.message
