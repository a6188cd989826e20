from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

One bar per long-running step (validating rows, committing records). In
non-TTY environments (CI, piped output) no bar is created so log lines are
not interleaved with ANSI control sequences.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Row/record progress bar.

    Usage::

        with ProgressTracker(len(rows), description="Validating", unit="row") as p:
            for row in rows:
                ...
                p.advance()
    """

    def __init__(self, total: int, *, description: str = "Processing", unit: str = "row") -> None:
        self.total = total
        self.description = description
        self.count = 0

        self.enabled = is_tty_enabled() and total > 0
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit=unit,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
                mininterval=0.5,
            )
        else:
            self.pbar = None

    def advance(self, n: int = 1) -> None:
        self.count += n
        if self.pbar is not None:
            self.pbar.update(n)

    def set_postfix(self, **kwargs: Any) -> None:
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
