"""
Retry wrapper shared by text, image and video calls.

Failures are retried with linear backoff: the sleep before retry i (1-based) is
delay * i. Authentication and safety rejections come back on the first attempt,
since sending the same request again cannot change them.
"""
import time
from typing import Callable

import config
from errors import NON_RETRYABLE_KINDS
from generation_client import GenerationResult, result_from_exception


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not config.DEBUG:
        return
    print(f"[RETRY] {msg}")


def with_retry(
    call: Callable[[], GenerationResult],
    retries: int | None = None,
    delay: float | None = None,
    label: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> GenerationResult:
    """
    Run call() up to retries + 1 times and return the first ok result, or the last failure.

    Args:
        call: Zero-argument function returning a GenerationResult. A raised ValueError
            or TypeError propagates. Any other exception is classified into
            a failed result.
        retries: Additional attempts after the first (default RETRY_ATTEMPTS).
        delay: Base backoff in seconds (default RETRY_DELAY).
        label: Operation name for log lines.
        sleep: Injected for tests.
    """
    retries = config.RETRY_ATTEMPTS if retries is None else retries
    delay = config.RETRY_DELAY if delay is None else delay
    tag = f"{label}: " if label else ""

    result = GenerationResult.failure("unknown", "not attempted")
    for attempt in range(retries + 1):
        if attempt > 0:
            wait = delay * attempt
            _log(f"{tag}retry {attempt}/{retries} in {wait:.1f}s", verbose_only=True)
            sleep(wait)
        try:
            result = call()
        except (ValueError, TypeError):
            raise
        except Exception as e:
            result = result_from_exception(e)
        if result.ok:
            return result
        if result.kind in NON_RETRYABLE_KINDS:
            _log(f"{tag}{result.kind} is not retryable: {result.message}")
            return result
        _log(f"{tag}attempt {attempt + 1}/{retries + 1} failed ({result.kind}): {result.message}")
    return result
