from __future__ import annotations

import time


def wait_until(predicate, timeout: float, interval: float = 0.2):
    """Polls ``predicate`` until it is truthy or ``timeout`` seconds pass."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return predicate()


def wait_for_document_ready(driver, timeout: float) -> bool:
    return bool(
        wait_until(
            lambda: driver.execute_script("return document.readyState") == "complete",
            timeout,
        )
    )


def settle(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)
