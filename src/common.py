"""Common utilities for running external tools."""

import codecs
import logging
import os
import select
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

# Seconds between terminate() and kill() when stopping a command
TERMINATE_GRACE = 5

# Seconds between cancel/deadline checks while waiting on output
POLL_INTERVAL = 0.5

READ_SIZE = 4096


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None,
    out: Optional[TextIO] = None,
    cancel: Optional[threading.Event] = None,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    When ``out`` or ``cancel`` is given the command is streamed: each output
    line is written to ``out`` as it arrives, and the process is terminated
    as soon as ``cancel`` is set.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    if out is not None or cancel is not None:
        return _run_streaming(cmd, cwd=cwd, timeout=timeout, env=env, out=out, cancel=cancel)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout or '', result.stderr or ''
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except Exception as e:
        return -1, '', str(e)


def _run_streaming(
    cmd: list[str],
    cwd: Optional[Path],
    timeout: int,
    env: Optional[dict],
    out: Optional[TextIO],
    cancel: Optional[threading.Event],
) -> tuple[int, str, str]:
    """Run a command, forwarding both streams to ``out`` line by line.

    Pipes are read with ``os.read`` on the raw fds so a partial line never
    blocks the loop; cancel and deadline checks run at least every
    ``POLL_INTERVAL`` seconds.
    """
    try:
        process = subprocess.Popen(
            cmd,
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        return -1, '', str(e)

    output_lines: list[str] = []
    stderr_lines: list[str] = []
    streams = {
        process.stdout.fileno(): _LineBuffer(output_lines, out),
        process.stderr.fileno(): _LineBuffer(stderr_lines, out),
    }

    def _result(rc: int, err: str = '') -> tuple[int, str, str]:
        for buf in streams.values():
            buf.flush()
        if err:
            stderr_lines.append(err)
        return rc, '\n'.join(output_lines), '\n'.join(stderr_lines)

    deadline = time.time() + timeout
    with process:
        try:
            open_fds = list(streams)
            while open_fds:
                if cancel is not None and cancel.is_set():
                    _stop(process)
                    return _result(-1, 'Command cancelled')

                if time.time() > deadline:
                    _stop(process)
                    return _result(-1, f'Command timed out after {timeout}s')

                readable, _, _ = select.select(open_fds, [], [], POLL_INTERVAL)
                for fd in readable:
                    chunk = os.read(fd, READ_SIZE)
                    if not chunk:
                        open_fds.remove(fd)
                        streams[fd].flush()
                        continue
                    streams[fd].feed(chunk)

            # Both pipes closed; the process is exiting
            try:
                process.wait(timeout=max(0.0, deadline - time.time()))
            except subprocess.TimeoutExpired:
                _stop(process)
                return _result(-1, f'Command timed out after {timeout}s')
        except Exception:
            process.kill()
            raise

    return _result(process.returncode)


class _LineBuffer:
    """Split raw pipe bytes into lines, keeping any partial line pending."""

    def __init__(self, lines: list[str], out: Optional[TextIO]):
        self.lines = lines
        self.out = out
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        self._pending = ''

    def feed(self, chunk: bytes) -> None:
        self._pending += self._decoder.decode(chunk)
        *complete, self._pending = self._pending.split('\n')
        for line in complete:
            self._emit(line)

    def flush(self) -> None:
        self._pending += self._decoder.decode(b'', final=True)
        if self._pending:
            self._emit(self._pending)
            self._pending = ''

    def _emit(self, line: str) -> None:
        line = line.rstrip('\r')
        self.lines.append(line)
        if self.out is not None:
            self.out.write(line + '\n')
            self.out.flush()


def _stop(process: subprocess.Popen) -> None:
    """Terminate a process, escalating to kill if it ignores SIGTERM."""
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE)
    except subprocess.TimeoutExpired:
        logger.debug(f"Process {process.pid} ignored SIGTERM, killing")
        process.kill()
        process.wait()
