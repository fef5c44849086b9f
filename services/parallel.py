"""Bounded-concurrency fan-out over nodes, clusters or providers."""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Optional

from ephfleet_core.errors import IndexedError, PartialFailure

logger = logging.getLogger(__name__)

UnitFn = Callable[[int], Optional[bytes]]


class UnitError(Exception):
    """Unit failure carrying output captured before the failure."""

    def __init__(self, message: str, output: bytes | str = b"") -> None:
        super().__init__(message)
        self.output = output


def run_parallel(
    description: str,
    count: int,
    concurrency: int,
    fn: UnitFn,
) -> tuple[list[IndexedError], Optional[PartialFailure]]:
    """Run ``fn(i)`` for every ``i`` in ``range(count)``.

    At most ``concurrency`` calls are in flight; zero means one worker per
    unit. Every index runs exactly once whatever happens to the others.
    Returns the failures sorted by index together with their combination,
    which is None when every unit succeeded.
    """

    if count <= 0:
        return [], None
    workers = count if concurrency <= 0 else min(concurrency, count)
    logger.debug(
        "Starting parallel fan-out",
        extra={"description": description, "count": count, "workers": workers},
    )

    failures: list[IndexedError] = []
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ephfleet")
    try:
        pending: dict[Future, int] = {executor.submit(fn, index): index for index in range(count)}
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                index = pending.pop(future)
                error = future.exception()
                if error is None:
                    continue
                failures.append(IndexedError(index, error, _output_of(error)))
    except BaseException:
        # Interrupted by the caller: drop everything not yet started.
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    failures.sort(key=lambda item: item.index)
    if not failures:
        return [], None
    return failures, PartialFailure(failures, description=description or None)


def run_parallel_or_raise(description: str, count: int, concurrency: int, fn: UnitFn) -> None:
    """Variant of :func:`run_parallel` raising the combined failure."""

    _, error = run_parallel(description, count, concurrency, fn)
    if error is not None:
        raise error


def _output_of(error: BaseException) -> str:
    output = getattr(error, "output", b"") or b""
    if isinstance(output, bytes):
        return output.decode("utf-8", "replace")
    return str(output)
