"""Short-lived anti-automation token holder.

One store per engine, passed in at construction.
"""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_MAX_AGE = 300.0


class VerificationTokenStore:
    def __init__(
        self,
        max_age: float | None = DEFAULT_TOKEN_MAX_AGE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_age = max_age
        self._clock = clock
        self._token: str | None = None
        self._issued_at = 0.0

    def set(self, token: str) -> None:
        self._token = token
        self._issued_at = self._clock()

    def get(self) -> str | None:
        """Current token, or None if absent or older than ``max_age``."""
        if self._token is None:
            return None
        if self.max_age is not None and self._clock() - self._issued_at > self.max_age:
            logger.info("Verification token expired")
            return None
        return self._token

    def clear(self) -> None:
        self._token = None

    @property
    def has_token(self) -> bool:
        return self.get() is not None
