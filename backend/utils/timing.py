import time
import functools
import logging

logger = logging.getLogger(__name__)

def timeit(label: str = ""):
    """
    Decorator to log execution time for a coroutine function.

    Usage:
        @timeit("request_reset")
        async def bar():
            await ...
    """

    def _decorate(func):
        name = label or getattr(func, "__qualname__", getattr(func, "__name__", "function"))

        @functools.wraps(func)
        async def _aw(*args, **kwargs):
            start = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000.0
                logger.info(f"[timing] {name} took {elapsed_ms:.2f} ms")

        return _aw

    return _decorate
