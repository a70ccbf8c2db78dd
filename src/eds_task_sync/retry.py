"""
Bounded retry with jittered exponential backoff, and secret redaction.
"""

import logging
import random
import re
import time
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TypeVar

from eds_task_sync.models import NetworkError
from eds_task_sync.models import RateLimitedError
from eds_task_sync.models import ServerError
from eds_task_sync.models import TaskSyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")

REDACTED = "[redacted]"
_BEARER_RE = re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/=]+", re.IGNORECASE)
_TOKEN_FIELD_RE = re.compile(r'"(token|jwt)"\s*:\s*"[^"]*"')


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.8
    max_delay: float = 6.0
    jitter_low: float = 0.85
    jitter_high: float = 1.15

    def delay_for(self, attempt: int, rng: Callable[[float, float], float] = random.uniform) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        backoff = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return backoff * rng(self.jitter_low, self.jitter_high)


DEFAULT_POLICY = RetryPolicy()


def is_transient(exc: BaseException, idempotent: bool = True) -> bool:
    """Whether ``exc`` is worth another attempt.

    A 429 means the request was rejected before it ran, so it is safe to
    repeat even for creates.  Timeouts, dropped connections and 5xx responses
    may hide a write that already happened, so those are only retried for
    idempotent calls.
    """
    if isinstance(exc, RateLimitedError):
        return True
    if not idempotent:
        return False
    return isinstance(exc, (NetworkError, ServerError))


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy = DEFAULT_POLICY,
    idempotent: bool = True,
    description: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` until it succeeds, fails permanently, or attempts run out.

    The last typed error is re-raised once retries are exhausted.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except TaskSyncError as e:
            if attempt >= policy.max_attempts or not is_transient(e, idempotent):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed ({e}); retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{policy.max_attempts})"
            )
            sleep(delay)
            attempt += 1


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Scrub credentials from text bound for logs or reports."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    text = _BEARER_RE.sub(f"Bearer {REDACTED}", text)
    return _TOKEN_FIELD_RE.sub(rf'"\1":"{REDACTED}"', text)


class RedactingFilter(logging.Filter):
    """Logging filter that runs every record through ``redact``."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message, self.secrets)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True
