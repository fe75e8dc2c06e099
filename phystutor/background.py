from __future__ import annotations

import logging
import typing as t
from concurrent.futures import Future, ThreadPoolExecutor

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Detached units of work with their own failure boundary.

    A submitted job never reports back to whoever submitted it: its result is
    dropped and any exception is logged here.
    """

    def __init__(self, max_workers: int = 2, *, name: str = "phystutor-bg") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)

    def submit(self, fn: t.Callable[..., t.Any], *args: t.Any, job_name: str | None = None, **kwargs: t.Any) -> Future:
        label = job_name or getattr(fn, "__name__", "job")

        def _run() -> t.Any:
            try:
                return fn(*args, **kwargs)
            except Exception:
                logger.exception("Background job %s failed", label)
                return None

        future = self._executor.submit(_run)
        logger.info("Background job %s scheduled", label)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
