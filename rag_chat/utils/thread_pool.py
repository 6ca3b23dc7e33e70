import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

T = TypeVar("T")

# bcrypt hashing and PyMuPDF extraction both block the calling thread
BLOCKING_POOL = ThreadPoolExecutor(max_workers=8, thread_name_prefix="rag-chat-blocking")


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call in the shared pool and await its result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(BLOCKING_POOL, functools.partial(func, *args, **kwargs))


def shutdown_pool() -> None:
    BLOCKING_POOL.shutdown(wait=False, cancel_futures=True)
