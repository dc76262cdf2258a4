"""
Progress callback plumbing for long-running solves.

Callback signature::

    def on_progress(progress: float, message: str, cancelable: bool) -> bool:
        '''
        Args:
            progress: 0.0 to 1.0 (or -1 for indeterminate)
            message: Current operation description
            cancelable: Whether cancel is supported

        Returns:
            False to cancel operation, True to continue
        '''
        print(f"{progress*100:.0f}%: {message}")
        return True
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeAlias

# Returns False to cancel, True to continue
ProgressCallback: TypeAlias = Callable[[float, str, bool], bool]

INDETERMINATE = -1.0


def report(
    callback: ProgressCallback | None,
    progress: float,
    message: str,
    cancelable: bool = True,
) -> bool:
    """Invoke *callback* if set.

    Returns:
        False if the callback asked to cancel, True otherwise.
    """
    if callback is None:
        return True
    return callback(progress, message, cancelable) is not False
