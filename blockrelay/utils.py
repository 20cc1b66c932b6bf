# utils.py
# little helpers shared by the API clients and the jobs
# - bounded retries for remote calls
# - API call history to watch the request rate
# - pause/stop flag files for long running processes

import asyncio
import logging
import os
import time
from collections import deque
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from bsv.hash import hash256

logger = logging.getLogger(__name__)

T = TypeVar("T")

api_call_timestamps = deque()  # Time stamps of last calls
MEASUREMENT_WINDOW_SECONDS = 60  # time for sliding average

BLOCK_HEADER_SIZE = 80


def record_api_call_and_get_rate() -> float:
    """Records the current timestamp and calculates the average rate over the window."""
    now = time.time()
    api_call_timestamps.append(now)

    # remove time stamps older than a measuring window
    while api_call_timestamps and api_call_timestamps[0] < now - MEASUREMENT_WINDOW_SECONDS:
        api_call_timestamps.popleft()

    count_in_window = len(api_call_timestamps)
    rate_per_minute = count_in_window / MEASUREMENT_WINDOW_SECONDS * 60

    logger.debug(f"[API Rate] Calls in last {MEASUREMENT_WINDOW_SECONDS}s: {count_in_window}. Avg Rate: {rate_per_minute:.2f} calls/min.")
    return rate_per_minute


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    retries: int = 3,
    delay: float = 1.0,
    context: str = "",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Calls fn until it succeeds, at most `retries` times, sleeping `delay`
    seconds between attempts. The last error is re-raised.
    """
    for attempt in range(1, retries + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt >= retries:
                raise
            logger.warning(f"{context} failed ({e}). Retrying... ({attempt}/{retries})")
            await asyncio.sleep(delay)
    raise ValueError(f"retries must be positive, got {retries}")


def verify_raw_block_hash(raw_block: bytes, expected_hash: str) -> bool:
    """
    Verifies that the first 80 bytes of a serialized block hash to the expected
    block hash (double SHA256, displayed Big-Endian).
    """
    if len(raw_block) < BLOCK_HEADER_SIZE:
        return False
    calculated_hash = hash256(raw_block[:BLOCK_HEADER_SIZE])[::-1]
    return calculated_hash.hex() == expected_hash.lower()


async def check_process_controls(process_name: str, poll_interval: float = 5.0) -> bool:
    """
    Checks for pause and stop flag files for a given process.
    Returns True if the process should stop, False otherwise.
    """
    pause_flag = f"{process_name}.pause.flag"
    stop_flag = f"{process_name}.stop.flag"

    if os.path.exists(pause_flag):
        logger.info(f"'{pause_flag}' detected. Pausing process. Remove the file to resume.")
        while os.path.exists(pause_flag):
            await asyncio.sleep(poll_interval)
        logger.info(f"'{pause_flag}' removed. Resuming process.")

    if os.path.exists(stop_flag):
        logger.info(f"'{stop_flag}' detected. Stopping process gracefully.")
        try:
            os.remove(stop_flag)
        except OSError as e:
            logger.error(f"Error removing {stop_flag}: {e}")
        return True

    return False
