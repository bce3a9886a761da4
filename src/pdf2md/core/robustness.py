"""Retry, timeout, rate limiting and batching for async units of work.

Every helper here wraps an ``async`` callable and returns another one, so
they compose by plain function composition::

    convert = with_retry(limiter.wrap(with_timeout(ai.convert_page, 60)))
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pdf2md.core.errors import (
    APIError,
    ConversionCancelled,
    PipelineError,
    PipelineTimeoutError,
    RateLimitError,
)

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[str, int, int], None]


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class RetryConfig:
    """Exponential backoff policy. ``max_attempts`` counts the first call."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5
    factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))


@dataclass
class RateLimitConfig:
    concurrency: int = 3
    min_delay: float = 0.2


DEFAULT_RETRY_CONFIG = RetryConfig()
DEFAULT_RATE_LIMIT_CONFIG = RateLimitConfig()


# =============================================================================
# Error Classification
# =============================================================================

RETRYABLE_MESSAGE_PATTERNS = (
    "rate limit",
    "429",
    "503",
    "timeout",
    "timed out",
    "econnreset",
    "network",
)

STATUS_CODE_PATTERN = re.compile(r"status[:\s]*(\d{3})", re.IGNORECASE)


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth another attempt."""
    if isinstance(error, ConversionCancelled):
        return False
    if isinstance(error, PipelineError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


def classify_error(error: BaseException) -> PipelineError:
    """Map any exception onto the pipeline error taxonomy."""
    if isinstance(error, PipelineError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return PipelineTimeoutError(str(error) or "Operation timed out")

    message = str(error) or error.__class__.__name__
    lowered = message.lower()

    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError(message)
    if "timeout" in lowered or "timed out" in lowered:
        return PipelineTimeoutError(message)

    match = STATUS_CODE_PATTERN.search(message)
    if match:
        return APIError(message, status_code=int(match.group(1)))

    return APIError(message, retryable=is_retryable(error))


# =============================================================================
# Decorators
# =============================================================================


def with_retry(
    fn: Callable[..., Awaitable[T]], config: RetryConfig | None = None
) -> Callable[..., Awaitable[T]]:
    """Retry retryable failures with exponential backoff.

    Non-retryable errors propagate immediately. The final error is always a
    ``PipelineError``.
    """
    config = config or DEFAULT_RETRY_CONFIG

    @wraps(fn)
    async def wrapper(*args, **kwargs) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn(*args, **kwargs)
            except ConversionCancelled:
                raise
            except Exception as e:
                error = classify_error(e)
                if attempt >= config.max_attempts or not is_retryable(error):
                    if error is e:
                        raise
                    raise error from e

                delay = config.delay_for(attempt)
                if isinstance(error, RateLimitError) and error.retry_after:
                    delay = max(delay, min(error.retry_after, config.max_delay))

                log.warning(
                    f"Attempt {attempt}/{config.max_attempts} failed: {error}. "
                    f"Retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    return wrapper


def with_timeout(
    fn: Callable[..., Awaitable[T]], seconds: float
) -> Callable[..., Awaitable[T]]:
    """Fail with ``PipelineTimeoutError`` if a call runs longer than ``seconds``."""

    @wraps(fn)
    async def wrapper(*args, **kwargs) -> T:
        try:
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=seconds)
        except asyncio.TimeoutError:
            raise PipelineTimeoutError(f"Operation timed out after {seconds}s")

    return wrapper


class RateLimiter:
    """Bounded concurrency plus a minimum delay between call starts.

    The last-call timestamp and the in-flight counter are owned by this
    object; pass the same instance to every unit that shares the budget.
    """

    def __init__(self, config: RateLimitConfig | None = None):
        self.config = config or DEFAULT_RATE_LIMIT_CONFIG
        self._semaphore = asyncio.Semaphore(self.config.concurrency)
        self._lock = asyncio.Lock()
        self._last_call = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        try:
            async with self._lock:
                wait = self._last_call + self.config.min_delay - time.monotonic()
                if wait > 0:
                    await asyncio.sleep(wait)
                self._last_call = time.monotonic()
        except BaseException:
            self._semaphore.release()
            raise

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def release(self) -> None:
        self.in_flight -= 1
        self._semaphore.release()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()

    def wrap(self, fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(fn)
        async def wrapper(*args, **kwargs) -> T:
            async with self:
                return await fn(*args, **kwargs)

        return wrapper


def with_robustness(
    fn: Callable[..., Awaitable[T]],
    retry_config: RetryConfig | None = None,
    timeout: float | None = 60.0,
    rate_limiter: RateLimiter | None = None,
) -> Callable[..., Awaitable[T]]:
    """Retry around (rate limit around (timeout around fn)).

    Each attempt waits for its own rate-limit slot and gets its own timeout;
    backoff sleeps do not hold a slot.
    """
    wrapped = fn
    if timeout:
        wrapped = with_timeout(wrapped, timeout)
    if rate_limiter is not None:
        wrapped = rate_limiter.wrap(wrapped)
    return with_retry(wrapped, retry_config)


# =============================================================================
# Batch Processing
# =============================================================================


async def process_with_concurrency(
    items: list[T],
    processor: Callable[[T, int], Awaitable[R]],
    concurrency: int = 3,
    retry_config: RetryConfig | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> list[R]:
    """Run ``processor(item, index)`` for every item, at most ``concurrency`` at once.

    Results keep input order.
    """
    semaphore = asyncio.Semaphore(concurrency)
    retrying = with_retry(processor, retry_config)
    completed = 0
    total = len(items)

    async def run(index: int, item: T) -> R:
        nonlocal completed
        async with semaphore:
            result = await retrying(item, index)
        completed += 1
        if on_progress:
            on_progress(completed, total)
        return result

    return list(await asyncio.gather(*(run(i, item) for i, item in enumerate(items))))


async def process_batches(
    items: list[T],
    batch_size: int,
    processor: Callable[[list[T]], Awaitable[list[R]]],
    delay_between_batches: float = 0.5,
    retry_config: RetryConfig | None = None,
    on_batch_complete: Callable[[int, int], None] | None = None,
) -> list[R]:
    """Split items into batches and process them one after another."""
    batches = [items[i:i + batch_size] for i in range(0, len(items), batch_size)]
    retrying = with_retry(processor, retry_config)
    results: list[R] = []

    for i, batch in enumerate(batches):
        if i > 0 and delay_between_batches > 0:
            await asyncio.sleep(delay_between_batches)
        results.extend(await retrying(batch))
        if on_batch_complete:
            on_batch_complete(i + 1, len(batches))

    return results


@dataclass
class UnitOutcome(Generic[T]):
    """Result of one page or window; ``value`` is None when it failed."""

    number: int
    value: T | None = None
    error: PipelineError | None = None


async def _run_units(
    units: list[tuple[int, Any]],
    processor: Callable[[Any], Awaitable[T]],
    limiter: RateLimiter,
    retry_config: RetryConfig | None,
    on_progress: Callable[[int, int], None] | None,
    on_error: Callable[[int, PipelineError], None] | None,
    continue_on_error: bool,
) -> list[UnitOutcome[T]]:
    retrying = with_retry(processor, retry_config)
    completed = 0

    async def run(number: int, unit) -> UnitOutcome[T]:
        nonlocal completed
        try:
            async with limiter:
                value = await retrying(unit)
            outcome = UnitOutcome(number=number, value=value)
        except ConversionCancelled:
            raise
        except Exception as e:
            error = classify_error(e)
            log.warning(f"Unit {number} failed: {error}")
            if on_error:
                on_error(number, error)
            if not continue_on_error:
                raise
            outcome = UnitOutcome(number=number, error=error)
        completed += 1
        if on_progress:
            on_progress(completed, len(units))
        return outcome

    tasks = [asyncio.ensure_future(run(number, unit)) for number, unit in units]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        # Stop the remaining units and collect their results before re-raising
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def process_pages_batch(
    page_numbers: list[int],
    processor: Callable[[int], Awaitable[T]],
    concurrency: int = 3,
    retry_config: RetryConfig | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    on_page_error: Callable[[int, PipelineError], None] | None = None,
    continue_on_error: bool = True,
) -> list[UnitOutcome[T]]:
    """Process pages concurrently; failed pages yield an empty outcome."""
    limiter = RateLimiter(RateLimitConfig(concurrency=concurrency, min_delay=0))
    return await _run_units(
        [(n, n) for n in page_numbers],
        processor,
        limiter,
        retry_config,
        on_progress,
        on_page_error,
        continue_on_error,
    )


async def process_windows_robust(
    windows: list[tuple[int, Any]],
    processor: Callable[[Any], Awaitable[T]],
    concurrency: int = 2,
    retry_config: RetryConfig | None = None,
    delay_between_windows: float = 0.5,
    on_progress: Callable[[int, int], None] | None = None,
    on_window_error: Callable[[int, PipelineError], None] | None = None,
    continue_on_error: bool = True,
) -> list[UnitOutcome[T]]:
    """Process ``(window_number, window)`` pairs with staggered starts.

    Window starts are at least ``delay_between_windows`` seconds apart.
    """
    limiter = RateLimiter(
        RateLimitConfig(concurrency=concurrency, min_delay=delay_between_windows)
    )
    return await _run_units(
        windows,
        processor,
        limiter,
        retry_config,
        on_progress,
        on_window_error,
        continue_on_error,
    )


async def sequence_with_delay(
    factories: list[Callable[[], Awaitable[T]]], delay: float = 0.0
) -> list[T]:
    """Await each factory in order with an optional pause between them."""
    results: list[T] = []
    for i, factory in enumerate(factories):
        if i > 0 and delay > 0:
            await asyncio.sleep(delay)
        results.append(await factory())
    return results


# =============================================================================
# Progress and Cancellation
# =============================================================================


@dataclass
class ProgressState:
    current: int = 0
    total: int = 100
    status: str = ""


class ProgressTracker:
    """Remember the latest progress and forward it to a callback."""

    def __init__(self, on_progress: ProgressCallback | None = None):
        self._on_progress = on_progress
        self.state = ProgressState()

    def update(self, current: int, total: int, status: str = "") -> None:
        self.state = ProgressState(current=current, total=total, status=status)
        if self._on_progress:
            self._on_progress(status, current, total)


class CancelToken:
    """Cooperative cancellation checked between units of work."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ConversionCancelled("Conversion cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def check_cancelled(token: CancelToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


def report(on_progress: ProgressCallback | None, status: str, current: int, total: int) -> None:
    if on_progress:
        on_progress(status, current, total)


def elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))
