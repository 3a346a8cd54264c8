# powerctl/polling.py
import time
from typing import Callable


def poll_until(condition: Callable[[], bool], timeout: float, interval: float,
               clock: Callable[[], float] = time.monotonic,
               sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Call `condition` until it returns True or `timeout` seconds have passed.
    The condition is always evaluated at least once. Returns the last result.
    """
    deadline = clock() + max(0.0, timeout)
    while True:
        if condition():
            return True
        remaining = deadline - clock()
        if remaining <= 0:
            return False
        sleep(min(interval, remaining))
