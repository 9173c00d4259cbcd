"""Local process execution with streamed output."""

import logging
import os
import queue
import shlex
import subprocess
import threading
from typing import Iterator

from uematrix.executor.base import ProcessResult

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 1000
_PUT_TIMEOUT = 0.1
_END = object()


def _build_command(program: str, args: str | list[str]) -> str | list[str]:
    if isinstance(args, list):
        return [program, *args]
    if os.name == "nt":
        # CreateProcess parses the command line itself
        return f'"{program}" {args}'.strip()
    return [program, *shlex.split(args)]


class ProcessStream:
    """Lines from a running process, merged stdout and stderr.

    A pump thread reads the pipe into a bounded queue. Iterate once; when
    iteration ends or the stream is closed early the process is killed and
    reaped. ``exit_code`` and ``result`` are set after the stream finishes.
    """

    def __init__(
        self,
        command: str | list[str],
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ):
        self.command = command
        self.exit_code: int | None = None
        self.lines: list[str] = []
        self._queue: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
        self._stop = threading.Event()
        self._consumed = False
        self._process: subprocess.Popen | None = None
        self._thread: threading.Thread | None = None

        try:
            self._process = subprocess.Popen(
                command,
                cwd=cwd or None,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            logger.error(f"Failed to start {command}: {e}")
            self.exit_code = -1
            self.lines.append(str(e))
            return

        self._thread = threading.Thread(target=self._pump, daemon=True)
        self._thread.start()

    @property
    def result(self) -> ProcessResult | None:
        if self.exit_code is None:
            return None
        return ProcessResult(exit_code=self.exit_code, output_lines=list(self.lines))

    def _put(self, item) -> bool:
        while not self._stop.is_set():
            try:
                self._queue.put(item, timeout=_PUT_TIMEOUT)
                return True
            except queue.Full:
                continue
        return False

    def _pump(self) -> None:
        try:
            for line in self._process.stdout:
                if not self._put(line.rstrip("\r\n")):
                    break
        except (OSError, ValueError) as e:
            logger.debug(f"Output pump stopped: {e}")
        finally:
            self._put(_END)

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("ProcessStream can only be iterated once")
        self._consumed = True
        if self._process is None:
            yield from list(self.lines)
            return

        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    break
                self.lines.append(item)
                yield item
            self.exit_code = self._process.wait()
        finally:
            self.close()

    def close(self) -> None:
        """Stop the pump and make sure the process is gone."""
        self._stop.set()
        if self._process is None:
            return
        if self._process.poll() is None:
            self._process.kill()
        code = self._process.wait()
        if self.exit_code is None:
            self.exit_code = code
        if self._process.stdout is not None:
            self._process.stdout.close()
        if self._thread is not None:
            self._thread.join(timeout=1)

    def __enter__(self) -> "ProcessStream":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ProcessRunner:
    """Starts local programs."""

    def stream(
        self,
        program: str,
        args: str | list[str] = "",
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessStream:
        command = _build_command(program, args)
        merged_env = {**os.environ, **env} if env else None
        logger.debug(f"Running {command} in {cwd or os.getcwd()}")
        return ProcessStream(command, cwd=cwd, env=merged_env)

    def run(
        self,
        program: str,
        args: str | list[str] = "",
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessResult:
        """Run to completion and collect every output line."""
        stream = self.stream(program, args, cwd=cwd, env=env)
        for _ in stream:
            pass
        return stream.result
