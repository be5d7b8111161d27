"""Indexed, fail-fast batch execution over a thread pool.

Responsibilities:
- Run one job per input item in parallel, tagging every job with its index.
- Collect results into a fixed-size slot array so order never depends on
  completion order.
- Abort acceptance of the whole batch on the first failure while letting
  already-running jobs finish, and hand their results back for cleanup.
"""

from __future__ import annotations

from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, as_completed, wait
from typing import Callable, Sequence, TypeVar

_In = TypeVar("_In")
_Out = TypeVar("_Out")

DEFAULT_BATCH_CONCURRENCY = 10


class BatchFailure(Exception):
    """Raised when one job of a batch fails.

    Attributes:
        index: Batch position of the first failure observed.
        error: Exception raised by that job.
        completed: Results of jobs that did succeed, keyed by batch position.
            Callers discard them but may need them to release side effects.
    """

    def __init__(self, index: int, error: BaseException, completed: dict[int, object]) -> None:
        super().__init__(f"Batch job {index} failed: {error}")
        self.index = index
        self.error = error
        self.completed = completed


def run_indexed(
    items: Sequence[_In],
    worker: Callable[[int, _In], _Out],
    *,
    max_workers: int = DEFAULT_BATCH_CONCURRENCY,
) -> list[_Out]:
    """Run `worker(index, item)` for every item and return results in input order.

    Raises:
        BatchFailure: On the first job failure. Jobs not yet started are cancelled;
            running jobs are awaited so their results can be reported.
    """

    if not items:
        return []

    slots: list[_Out | None] = [None] * len(items)
    filled = [False] * len(items)
    workers = max(1, min(max_workers, len(items)))

    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_index: dict[Future[_Out], int] = {
            executor.submit(worker, index, item): index for index, item in enumerate(items)
        }
        done, pending = wait(future_to_index, return_when=FIRST_EXCEPTION)
        failure = _first_failure(done, future_to_index)
        if failure is not None:
            for future in pending:
                future.cancel()
            for future in as_completed([item for item in pending if not item.cancelled()]):
                done.add(future)
            completed = {
                future_to_index[future]: future.result()
                for future in done
                if not future.cancelled() and future.exception() is None
            }
            index, error = failure
            raise BatchFailure(index, error, completed)

        for future in done:
            index = future_to_index[future]
            slots[index] = future.result()
            filled[index] = True

    missing = [index for index, present in enumerate(filled) if not present]
    if missing:
        raise RuntimeError(f"Batch finished without results for positions {missing}.")
    return [slot for slot in slots]  # type: ignore[misc]


def _first_failure(
    done: set[Future[_Out]], future_to_index: dict[Future[_Out], int]
) -> tuple[int, BaseException] | None:
    """Return the lowest-index failure among finished futures, if any."""

    failures = sorted(
        (future_to_index[future], future.exception())
        for future in done
        if not future.cancelled() and future.exception() is not None
    )
    if not failures:
        return None
    index, error = failures[0]
    return index, error  # type: ignore[return-value]
