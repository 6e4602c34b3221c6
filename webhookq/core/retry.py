"""
Retry backoff for webhook delivery attempts.
"""

from typing import Optional, Union


def compute_backoff_delay(
    *,
    attempt: int,
    base_delay: Union[int, float],
    max_delay: Optional[Union[int, float]] = None,
) -> float:
    """
    Compute the delay to wait before a retry attempt.

    Args:
        attempt: 1-based retry index (1 for the first retry).
        base_delay: delay in seconds before the first retry.
        max_delay: optional upper bound on the delay in seconds.

    Returns:
        ``base_delay * 2 ** (attempt - 1)`` in seconds (>= 0).
    """
    if attempt < 1:
        attempt = 1

    delay = float(base_delay) * (2 ** (attempt - 1))

    if max_delay is not None:
        delay = min(delay, float(max_delay))

    if delay < 0:
        delay = 0.0

    return delay
