from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import IO, Callable, Protocol

from oni_agent.batchfix.fixer import BatchFixer
from oni_agent.runtime.venv import ONIEnvironment
from oni_agent.utils.cancel import CancellationToken
from oni_agent.utils.logstream import LogStream


logger = logging.getLogger(__name__)

_READ_CHUNK = 4096
_WAIT_POLL_S = 0.2


class CommandFailedError(RuntimeError):
    def __init__(self, args: list[str], returncode: int) -> None:
        super().__init__(f"command {' '.join(args)!r} exited with status {returncode}")
        self.command_args = list(args)
        self.returncode = int(returncode)


class BatchPatchError(RuntimeError):
    pass


class Runner(Protocol):
    """The unit of work a Job drives.

    stdout/stderr are mostly meaningful for command-line work; in-process
    runners return empty streams.
    """

    def start(self, cancel: CancellationToken) -> None: ...

    def wait(self) -> None: ...

    @property
    def stdout(self) -> LogStream: ...

    @property
    def stderr(self) -> LogStream: ...


def _pump(pipe: IO[bytes], sink: LogStream) -> None:
    try:
        while True:
            chunk = pipe.read1(_READ_CHUNK)
            if not chunk:
                break
            sink.write(chunk)
    except (OSError, ValueError) as e:
        logger.warning("Output capture stopped early: %s", e)
    finally:
        sink.close()
        pipe.close()


class ONIRunner:
    """Runs `manage.py <args>` in the activated ONI environment."""

    def __init__(self, env: ONIEnvironment, args: list[str]) -> None:
        self._env = env
        self.args = list(args)
        self._stdout = LogStream()
        self._stderr = LogStream()
        self._proc: subprocess.Popen[bytes] | None = None
        self._readers: list[threading.Thread] = []
        self._cancel: CancellationToken | None = None

    @property
    def stdout(self) -> LogStream:
        return self._stdout

    @property
    def stderr(self) -> LogStream:
        return self._stderr

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    def start(self, cancel: CancellationToken) -> None:
        self._spawn(self.args, cancel)

    def _spawn(self, args: list[str], cancel: CancellationToken) -> None:
        self._cancel = cancel
        self._proc = self._env.popen(args)
        assert self._proc.stdout is not None and self._proc.stderr is not None
        self._readers = [
            threading.Thread(target=_pump, args=(self._proc.stdout, self._stdout), daemon=True),
            threading.Thread(target=_pump, args=(self._proc.stderr, self._stderr), daemon=True),
        ]
        for t in self._readers:
            t.start()

    def wait(self) -> None:
        proc = self._proc
        if proc is None:
            raise RuntimeError("wait called before start")

        killed = False
        while True:
            try:
                returncode = proc.wait(timeout=_WAIT_POLL_S)
                break
            except subprocess.TimeoutExpired:
                if not killed and self._cancel is not None and self._cancel.cancelled:
                    logger.warning("Cancellation requested; killing pid %s", proc.pid)
                    proc.kill()
                    killed = True

        for t in self._readers:
            t.join()

        if returncode != 0:
            raise CommandFailedError(self._env.command(self.args), returncode)


class LoadTitleRunner(ONIRunner):
    """Loads a title from a blob of MARC XML.

    The XML is written to a fresh temp dir which `manage.py load_titles` is
    pointed at. The temp files are removed only after a successful load;
    anything left from a failed load is kept for debugging.
    """

    def __init__(self, env: ONIEnvironment, xml: bytes) -> None:
        super().__init__(env, [])
        self._xml = bytes(xml)
        self.marcdir: str | None = None
        self.xmlfile: str | None = None

    def start(self, cancel: CancellationToken) -> None:
        self.marcdir = tempfile.mkdtemp(suffix="-oni-marc")
        self.xmlfile = os.path.join(self.marcdir, "marc.xml")
        fd = os.open(self.xmlfile, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(self._xml)

        self.args = ["load_titles", self.marcdir]
        self._spawn(self.args, cancel)

    def wait(self) -> None:
        try:
            super().wait()
        except CommandFailedError:
            logger.error("Error loading MARC XML; leaving %s in place", self.marcdir)
            raise

        if self.xmlfile:
            Path(self.xmlfile).unlink(missing_ok=True)
        if self.marcdir:
            try:
                os.rmdir(self.marcdir)
            except OSError as e:
                logger.warning("Unable to remove temp dir %s: %s", self.marcdir, e)


FixerFactory = Callable[[str, str], BatchFixer]


class BatchPatchRunner:
    """Builds a corrected copy of a batch in-process, with issues removed.

    start() hands the work to a background thread; wait() blocks until that
    thread signals completion. There is no command output to capture.
    """

    def __init__(
        self,
        src: str,
        dest: str,
        keys: list[str],
        *,
        fixer_factory: FixerFactory | None = None,
    ) -> None:
        self.src = str(src)
        self.dest = str(dest)
        self.keys = list(keys)
        self._fixer_factory: FixerFactory = fixer_factory or (lambda s, d: BatchFixer(s, d))
        self._done = threading.Event()
        self._thread: threading.Thread | None = None
        self._err: BaseException | None = None
        self._stdout = LogStream()
        self._stderr = LogStream()

    @property
    def stdout(self) -> LogStream:
        return self._stdout

    @property
    def stderr(self) -> LogStream:
        return self._stderr

    def start(self, cancel: CancellationToken) -> None:
        self._done.clear()
        self._thread = threading.Thread(target=self._run, args=(cancel,), name="oni-batch-patch", daemon=True)
        self._thread.start()

    def _run(self, cancel: CancellationToken) -> None:
        try:
            try:
                fixer = self._fixer_factory(self.src, self.dest)
            except Exception as e:
                logger.error("Unable to create batch fixer: %s", e)
                self._err = BatchPatchError(f"creating batch fixer: {e}")
                self._err.__cause__ = e
                return
            try:
                fixer.remove_issues(self.keys, cancel)
            except Exception as e:
                logger.error("Unable to remove issues: %s", e)
                self._err = BatchPatchError(f"removing issues: {e}")
                self._err.__cause__ = e
        finally:
            self._done.set()

    def wait(self) -> None:
        if self._thread is None:
            raise RuntimeError("wait called before start")
        self._done.wait()
        if self._err is not None:
            raise self._err


class NoOpRunner:
    """Runner for requests that turned out to need no work."""

    def __init__(self) -> None:
        self._stdout = LogStream()
        self._stderr = LogStream()

    @property
    def stdout(self) -> LogStream:
        return self._stdout

    @property
    def stderr(self) -> LogStream:
        return self._stderr

    def start(self, cancel: CancellationToken) -> None:
        return None

    def wait(self) -> None:
        return None
