"""Background worker pool for messaging side work.

The messaging services hand deferred work (currently the sent -> delivered
transition of a freshly stored message) to ``submit_task``. The pool is
created on first use and sized by ``configure_executor``, which the app
factory calls with ``messaging.worker_threads``.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from atexit import register as _atexit_register
import threading
import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

_executor = None
_max_workers = DEFAULT_MAX_WORKERS
_executor_lock = threading.Lock()


def configure_executor(max_workers: int):
    """Set the worker count. Takes effect when the pool is next created."""
    global _max_workers
    _max_workers = max_workers or DEFAULT_MAX_WORKERS
    logger.debug("POOL: worker count set to %d", _max_workers)


def get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        with _executor_lock:
            if _executor is None:
                _executor = ThreadPoolExecutor(max_workers=_max_workers, thread_name_prefix='locket-bg')
                _atexit_register(shutdown_executor)
                logger.info("POOL: started with %d worker(s)", _max_workers)
    return _executor


def submit_task(fn, *args, **kwargs) -> Future:
    """Queue ``fn`` on the pool. Task errors stay on the returned Future."""
    return get_executor().submit(fn, *args, **kwargs)


def shutdown_executor(wait: bool = False):
    """Stop the pool; a later submit starts a fresh one."""
    global _executor
    with _executor_lock:
        pool, _executor = _executor, None
    if pool is not None:
        pool.shutdown(wait=wait)
