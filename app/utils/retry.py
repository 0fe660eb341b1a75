import time

from typing import Callable, Tuple, Type, TypeVar
from app.utils.log import app_logger

T = TypeVar('T')


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    **log_context,
) -> T:
    """Call `func` until it succeeds or `attempts` calls have failed.

    Only exceptions listed in `retry_on` are retried, everything else
    propagates on the first failure. The wait between attempts is a fixed
    `delay`. When attempts run out the last exception is re-raised with an
    `attempts` attribute set to the number of calls made.
    """
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            app_logger.warning(
                "retry.attempt_failed",
                attempt=attempt,
                max_attempts=attempts,
                exc_type=type(e).__name__,
                error=str(e),
                **log_context,
            )
            if attempt == attempts:
                try:
                    e.attempts = attempt
                except AttributeError:
                    pass
                raise
            sleep(delay)
