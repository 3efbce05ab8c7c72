"""
Exponential backoff shared by the fetcher and the publisher.
"""


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retry number `attempt` (0-based): base * 2**attempt, capped."""
    if attempt < 0:
        attempt = 0
    return min(base * (2 ** attempt), cap)
