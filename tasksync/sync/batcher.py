"""Split the drained queue into fixed-size batches."""

from collections.abc import Sequence
from typing import TypeVar

from ..errors import ConfigError

T = TypeVar("T")


def partition(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split items into contiguous groups of at most batch_size.

    Order is preserved within and across groups; the last group may be
    smaller.

    Args:
        items: Ordered items, typically queue items oldest first.
        batch_size: Maximum group size.

    Returns:
        List of batches, empty if there are no items.

    Raises:
        ConfigError: If batch_size is not a positive integer.
    """
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigError(f"batch_size must be a positive integer, got {batch_size!r}")

    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]
