from __future__ import annotations

import logging
import os
import posixpath
import shutil
from pathlib import Path

from oni_agent.batchfix.batch_xml import BatchManifest, ManifestError, parse_batch
from oni_agent.utils.cancel import CancellationToken, CancelledError
from oni_agent.utils.file_copy import FileCopyError, copy_file


logger = logging.getLogger(__name__)

STAGING_PREFIX = "WIP-UNREADY-"
MANIFEST_REL_PATH = "data/batch.xml"
_TIFF_EXTENSIONS = {".tif", ".tiff"}
_VALIDATED_XML_SUFFIX = "_1.xml"


class FixerError(RuntimeError):
    pass


class BatchFixer:
    """Copies a batch to a new location, applying a fix to what gets copied.

    The only fix today is removing issues: files belonging to the removed
    issues are left out and batch.xml is rewritten without them. Work happens
    in a staging sibling of the destination which is renamed into place only
    once everything has been written, so a failed run never leaves a
    destination behind.
    """

    def __init__(
        self,
        source: str | Path,
        destination: str | Path,
        *,
        copy_attempts: int = 5,
        copy_delay_s: float = 1.0,
    ) -> None:
        self.src = Path(os.path.normpath(str(source)))
        self.dst = Path(os.path.normpath(str(destination)))
        self.staging = self.dst.parent / f"{STAGING_PREFIX}{self.dst.name}"
        self.skip_dirs: list[str] = []
        self.batch: BatchManifest | None = None
        self._copy_attempts = int(copy_attempts)
        self._copy_delay_s = float(copy_delay_s)

        if not self.src.exists():
            raise FixerError(f"invalid source ({str(self.src)!r}): does not exist")
        if not self.src.is_dir():
            raise FixerError(f"invalid source ({str(self.src)!r}): not a directory")
        if os.path.lexists(self.dst):
            raise FixerError(f"invalid destination ({str(self.dst)!r}): already exists")
        if os.path.lexists(self.staging):
            raise FixerError(f"temporary destination ({str(self.staging)!r}) already exists")

    def _read_source_batch(self, keys: list[str]) -> None:
        try:
            self.batch = parse_batch(self.src / MANIFEST_REL_PATH, keys)
        except ManifestError as e:
            raise FixerError(f"parsing source batch: {e}") from e
        self.skip_dirs = [i.directory for i in self.batch.issues if i.skip]

    def _excluded(self, rel_path: str) -> bool:
        if rel_path == MANIFEST_REL_PATH:
            return True

        filename = posixpath.basename(rel_path).lower()
        if filename.endswith(_VALIDATED_XML_SUFFIX):
            return True
        if posixpath.splitext(filename)[1] in _TIFF_EXTENSIONS:
            return True

        # Issue paths in batch.xml are relative to the data dir.
        if not rel_path.startswith("data/"):
            return False
        rel_dir = posixpath.dirname(rel_path[len("data/") :])
        for skip in self.skip_dirs:
            if not skip:
                continue
            if rel_dir == skip or rel_dir.startswith(skip + "/"):
                return True
        return False

    def _walk_and_copy(self, cancel: CancellationToken | None) -> int:
        def _raise(err: OSError) -> None:
            raise err

        copied = 0
        for dirpath, dirnames, filenames in os.walk(self.src, onerror=_raise):
            dirnames.sort()
            rel_dir = os.path.relpath(dirpath, self.src)
            for name in sorted(filenames):
                if cancel is not None:
                    cancel.raise_if_cancelled()

                rel = name if rel_dir == "." else os.path.join(rel_dir, name)
                rel_posix = rel.replace(os.sep, "/")
                if self._excluded(rel_posix):
                    logger.debug("Skipping %s", rel_posix)
                    continue

                target = self.staging / rel
                try:
                    target.parent.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    raise FixerError(f"creating dir {str(target.parent)!r} in destination: {e}") from e
                copy_file(
                    self.src / rel,
                    target,
                    attempts=self._copy_attempts,
                    delay_s=self._copy_delay_s,
                )
                copied += 1
        return copied

    def _cleanup_staging(self) -> None:
        shutil.rmtree(self.staging, ignore_errors=True)

    def remove_issues(self, keys: list[str], cancel: CancellationToken | None = None) -> None:
        """Build the destination batch without the given issues.

        Skipped: the source batch.xml (rewritten instead), validated XML
        files (*_1.xml), TIFFs, and everything under a removed issue's directory.
        """
        self._read_source_batch(list(keys))
        assert self.batch is not None
        logger.info(
            "Correcting batch %r: %s -> %s (removing %d issue(s))",
            self.batch.name,
            self.src,
            self.dst,
            len(self.skip_dirs),
        )

        try:
            copied = self._walk_and_copy(cancel)
        except (OSError, FileCopyError, FixerError, CancelledError):
            self._cleanup_staging()
            raise

        try:
            self.batch.write(self.staging / MANIFEST_REL_PATH)
        except OSError as e:
            self._cleanup_staging()
            raise FixerError(f"writing destination batch: {e}") from e

        try:
            os.rename(self.staging, self.dst)
        except OSError as e:
            self._cleanup_staging()
            raise FixerError(f"moving temporary directory {str(self.staging)!r} to {str(self.dst)!r}: {e}") from e

        logger.info("Batch %r written to %s (%d files copied)", self.batch.name, self.dst, copied)
