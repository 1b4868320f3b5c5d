from __future__ import annotations

import io
import os
import signal
import subprocess
import threading
import time
from typing import IO, Mapping, Sequence

from loguru import logger

from .contracts import RunOutcome, RunStatus

_READ_CHUNK_CHARS = 1024
_TAIL_CHARS = 4000


class _StreamDrain(threading.Thread):
    """
    Reads one child stream to EOF so the child never blocks on a full pipe.

    Only a bounded tail is kept; the stream is closed when the reader exits,
    whether it hit EOF or an error.
    """

    def __init__(self, stream: IO[bytes], *, label: str) -> None:
        super().__init__(name=f"drain-{label}", daemon=True)
        self._stream = stream
        self._label = label
        self._tail = ""

    @property
    def tail(self) -> str:
        return self._tail

    def run(self) -> None:
        reader = io.TextIOWrapper(self._stream, encoding="utf-8", errors="replace")
        try:
            for chunk in iter(lambda: reader.read(_READ_CHUNK_CHARS), ""):
                self._tail = (self._tail + chunk)[-_TAIL_CHARS:]
        except (OSError, ValueError) as e:
            logger.debug("{} stream read stopped: {}", self._label, e)
        finally:
            try:
                reader.close()
            except OSError:
                pass
        if self._tail:
            logger.debug("{}: {}", self._label, self._tail)


def _signal_process(proc: subprocess.Popen, *, force: bool) -> None:
    try:
        if os.name != "nt":
            try:
                os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
                return
            except OSError:
                pass
        if force:
            proc.kill()
        else:
            proc.terminate()
    except OSError:
        # Already gone.
        pass


class ProcessRunner:
    """
    Runs a non-interactive external program under a wall-clock deadline.

    Per run there are three helper threads: one drain each for stdout and
    stderr, and one that waits on the process. The calling thread supervises
    the waiter against the deadline and an optional cancel event. Every path
    out of `run` tears the child down and joins all three threads.
    """

    def __init__(
        self,
        *,
        grace_period_s: float = 3.0,
        poll_interval_s: float = 0.05,
        drain_join_timeout_s: float = 5.0,
    ) -> None:
        self.grace_period_s = grace_period_s
        self.poll_interval_s = poll_interval_s
        self.drain_join_timeout_s = drain_join_timeout_s

    def run(
        self,
        command: Sequence[str],
        *,
        env_overrides: Mapping[str, str] | None = None,
        timeout_s: float,
        cancel_event: threading.Event | None = None,
        label: str = "process",
    ) -> RunOutcome:
        env = dict(os.environ)
        env.update(env_overrides or {})

        popen_kwargs: dict = dict(
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
        )
        if os.name == "nt":
            creationflags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
            if creationflags:
                popen_kwargs["creationflags"] = creationflags
        else:
            # Own process group, so teardown also reaches grandchildren.
            popen_kwargs["start_new_session"] = True

        logger.debug("{} command: {}", label, " ".join(command))
        started = time.monotonic()
        proc = subprocess.Popen(list(command), **popen_kwargs)

        out_drain = _StreamDrain(proc.stdout, label=f"{label} stdout")
        err_drain = _StreamDrain(proc.stderr, label=f"{label} stderr")
        exited = threading.Event()

        def _wait() -> None:
            try:
                proc.wait()
            finally:
                exited.set()

        waiter = threading.Thread(target=_wait, name=f"wait-{label}", daemon=True)
        out_drain.start()
        err_drain.start()
        waiter.start()

        try:
            status = self._supervise(exited, started + timeout_s, cancel_event)
        except BaseException:
            self._teardown(proc, exited)
            self._join(proc, waiter, out_drain, err_drain)
            raise

        if status is not RunStatus.COMPLETED:
            logger.debug("{} {}; terminating pid {}", label, status.value, proc.pid)
            self._teardown(proc, exited)
        self._join(proc, waiter, out_drain, err_drain)

        return RunOutcome(
            status=status,
            returncode=proc.returncode,
            elapsed_s=time.monotonic() - started,
            stdout=out_drain.tail,
            stderr=err_drain.tail,
        )

    def _supervise(
        self,
        exited: threading.Event,
        deadline: float,
        cancel_event: threading.Event | None,
    ) -> RunStatus:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return RunStatus.INTERRUPTED
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return RunStatus.TIMED_OUT
            if exited.wait(min(self.poll_interval_s, remaining)):
                return RunStatus.COMPLETED

    def _teardown(self, proc: subprocess.Popen, exited: threading.Event) -> None:
        if exited.is_set():
            return
        _signal_process(proc, force=False)
        if exited.wait(self.grace_period_s):
            return
        _signal_process(proc, force=True)
        if not exited.wait(self.grace_period_s):
            logger.warning("process {} did not exit after SIGKILL", proc.pid)

    def _join(self, proc: subprocess.Popen, waiter: threading.Thread, *drains: _StreamDrain) -> None:
        waiter.join(self.grace_period_s)
        for drain in drains:
            drain.join(self.drain_join_timeout_s)
        if not any(drain.is_alive() for drain in drains):
            return

        # The child is gone but something it spawned still holds its pipes.
        logger.debug("pid {} left descendants holding its output; killing its group", proc.pid)
        _signal_process(proc, force=True)
        for drain in drains:
            drain.join(self.grace_period_s)
            if drain.is_alive():
                logger.warning("{} still draining after {}s", drain.name, self.drain_join_timeout_s)
