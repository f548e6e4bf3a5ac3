"""
Bounded retry for externally‑facing steps.

Built on :mod:`backoff` with a constant wait and a hard ``max_tries``; the
outcome is handed back as a tagged :class:`Ok` / :class:`Err` value so the
caller decides which domain error an exhausted budget turns into.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Tuple, Type, TypeVar, Union

import backoff

log = logging.getLogger(__name__)

T = TypeVar("T")

ExcSpec = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    attempts: int


@dataclass(frozen=True)
class Err:
    error: BaseException
    attempts: int


RetryResult = Union[Ok[T], Err]


async def retry_async(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    label: str = "call",
    max_tries: int = 3,
    interval: float = 0.0,
    exceptions: ExcSpec = Exception,
    giveup: Callable[[Exception], bool] = lambda exc: False,
    **kwargs: Any,
) -> RetryResult[T]:
    """
    Await ``fn(*args, **kwargs)`` up to ``max_tries`` times, sleeping
    ``interval`` seconds between attempts.

    Exceptions outside ``exceptions`` propagate untouched on the first try;
    one for which ``giveup`` is true ends the loop at once as an ``Err``.
    """
    if max_tries < 1:
        raise ValueError("max_tries must be >= 1")

    attempts = 0

    async def _attempt() -> T:
        nonlocal attempts
        attempts += 1
        return await fn(*args, **kwargs)

    def _on_backoff(details: dict) -> None:
        log.warning(
            "[retry] %s failed (attempt %d/%d), retrying in %.1fs: %s",
            label,
            details["tries"],
            max_tries,
            details["wait"],
            details.get("exception"),
        )

    def _on_giveup(details: dict) -> None:
        log.error(
            "[retry] %s gave up after %d attempt(s): %s",
            label,
            details["tries"],
            details.get("exception"),
        )

    wrapped = backoff.on_exception(
        backoff.constant,
        exceptions,
        max_tries=max_tries,
        giveup=giveup,
        interval=interval,
        jitter=None,
        on_backoff=_on_backoff,
        on_giveup=_on_giveup,
    )(_attempt)

    try:
        value = await wrapped()
    except exceptions as exc:
        return Err(exc, attempts)
    return Ok(value, attempts)
