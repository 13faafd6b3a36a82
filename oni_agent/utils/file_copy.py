from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable


logger = logging.getLogger(__name__)


class FileCopyError(RuntimeError):
    def __init__(self, message: str, *, path: str) -> None:
        super().__init__(message)
        self.path = path


def _do_copy(src: Path, dst: Path) -> None:
    # Nothing to do when both names point at the same file.
    if os.path.abspath(src) == os.path.abspath(dst):
        return

    try:
        fin = open(src, "rb")
    except OSError as e:
        raise FileCopyError(f"unable to read {str(src)!r}: {e}", path=str(src)) from e

    with fin:
        try:
            fout = open(dst, "wb")
        except OSError as e:
            raise FileCopyError(f"unable to create {str(dst)!r}: {e}", path=str(dst)) from e

        err: FileCopyError | None = None
        try:
            shutil.copyfileobj(fin, fout)
        except OSError as e:
            err = FileCopyError(f"unable to write to {str(dst)!r}: {e}", path=str(dst))
            err.__cause__ = e
        if err is None:
            try:
                fout.flush()
                os.fsync(fout.fileno())
            except OSError as e:
                err = FileCopyError(f"unable to sync {str(dst)!r}: {e}", path=str(dst))
                err.__cause__ = e
        try:
            fout.close()
        except OSError as e:
            if err is None:
                err = FileCopyError(f"unable to close {str(dst)!r}: {e}", path=str(dst))
                err.__cause__ = e
        if err is not None:
            raise err


def copy_file(
    src: str | Path,
    dst: str | Path,
    *,
    attempts: int = 5,
    delay_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Copy one file, retrying to ride out short network-storage hiccups.

    Permanent problems (permissions, a full disk) fail every attempt, so the
    delay stays short and the last error is raised once attempts run out.
    """
    last_error: FileCopyError | None = None
    for n in range(max(1, int(attempts))):
        if n > 0:
            sleep(delay_s)
        try:
            _do_copy(Path(src), Path(dst))
            return
        except FileCopyError as e:
            logger.warning("Copy attempt %d of %r failed: %s", n + 1, str(src), e)
            last_error = e

    assert last_error is not None
    raise last_error
