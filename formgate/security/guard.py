"""Anti-abuse checks run before a submission is validated."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from ..errors import CsrfRejected, RateLimited, SpamRejected
from .csrf import verify_csrf_token
from .rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


def _is_filled(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return any(_is_filled(v) for v in value)
    return str(value) != ""


class AbuseGuard:
    """Honeypot, CSRF and rate-limit checks, in that order."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        honeypot_field: str = "_gotcha",
        csrf_field: str = "_csrf",
        csrf_secret: str = "",
        csrf_max_age_seconds: int = 3600,
    ) -> None:
        self.limiter = limiter
        self.honeypot_field = honeypot_field
        self.csrf_field = csrf_field
        self.csrf_secret = csrf_secret
        self.csrf_max_age_seconds = csrf_max_age_seconds

    @property
    def csrf_enabled(self) -> bool:
        return bool(self.csrf_secret)

    def check_honeypot(self, data: Mapping[str, object]) -> None:
        if _is_filled(data.get(self.honeypot_field)):
            raise SpamRejected("Spam detected")

    def check_csrf(self, form_id: str, data: Mapping[str, object]) -> None:
        if not self.csrf_enabled:
            return
        token = data.get(self.csrf_field)
        if isinstance(token, (list, tuple)):
            token = token[0] if token else None
        if not verify_csrf_token(
            self.csrf_secret,
            form_id,
            token if isinstance(token, str) else None,
            max_age_seconds=self.csrf_max_age_seconds,
        ):
            raise CsrfRejected("Invalid or expired form token")

    async def check_rate(self, identifier: str, now: float | None = None) -> None:
        if not await self.limiter.admit(identifier, now):
            retry_after = self.limiter.retry_after(identifier, now)
            logger.info("Rate limit exceeded for %s (retry in %ss)", identifier, retry_after)
            raise RateLimited(
                "Rate limit exceeded. Please try again later.", retry_after=retry_after
            )

    async def screen(
        self,
        form_id: str,
        identifier: str,
        data: Mapping[str, object],
        now: float | None = None,
    ) -> None:
        """Raise the first failing check; the honeypot never spends a rate slot."""
        self.check_honeypot(data)
        self.check_csrf(form_id, data)
        await self.check_rate(identifier, now)
