"""Advisory files shared between twin processes.

Two mechanisms, both advisory only:

* RunMarker: a PID file announcing that a build loop is running in a
  project, so `twin steer` can tell the user their note will be picked up.
* TwinLock: an exclusive-create lock guarding mutations of the taste
  profile, which may be shared by several projects.

InterruptHandler implements the two-stage Ctrl-C: the first press asks
the loop to stop after the current story, the second tears everything
down immediately.
"""

import atexit
import logging
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from twin.utils import Colors

logger = logging.getLogger(__name__)

INTERRUPT_EXIT_CODE = 130


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class TwinLock:
    """Exclusive lock file next to a taste profile.

    The lock is ``<profile>.lock`` created with O_CREAT | O_EXCL and holding
    the owner's PID. When the file already exists the acquirer waits
    ``retry_delay_s`` between ``retries`` attempts and then assumes the lock
    is stale and takes it over.
    """

    def __init__(
        self,
        target: Path,
        retries: int = 5,
        retry_delay_s: float = 1.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.target = Path(target)
        self.lock_path = self.target.with_name(self.target.name + ".lock")
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep_fn
        self._held = False

    def acquire(self) -> bool:
        """Take the lock.

        Returns:
            True if the lock was free, False if a stale lock was overridden.
        """
        for _ in range(max(self.retries, 1)):
            try:
                fd = os.open(
                    str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644
                )
            except FileExistsError:
                self._sleep(self.retry_delay_s)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            return True

        logger.warning("Overriding stale lock %s", self.lock_path)
        self.lock_path.write_text(str(os.getpid()))
        self._held = True
        return False

    def release(self) -> None:
        if self._held:
            _remove_quietly(self.lock_path)
            self._held = False

    def __enter__(self) -> "TwinLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class RunMarker:
    """PID file marking an active build loop.

    Removed on normal exit, on exceptions, and from an atexit hook for
    anything that unwinds past the context manager.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._registered = False

    def create(self) -> None:
        self.path.write_text(f"{os.getpid()}\n")
        if not self._registered:
            atexit.register(self.remove)
            self._registered = True

    def remove(self) -> None:
        _remove_quietly(self.path)

    def __enter__(self) -> "RunMarker":
        self.create()
        return self

    def __exit__(self, *exc_info) -> None:
        self.remove()

    @staticmethod
    def read_pid(path: Path) -> Optional[int]:
        try:
            return int(Path(path).read_text().strip())
        except (OSError, ValueError):
            return None

    @classmethod
    def is_active(cls, path: Path) -> bool:
        """True when the marker exists and names a live process."""
        pid = cls.read_pid(path)
        return pid is not None and _pid_alive(pid)


class InterruptHandler:
    """Two-stage SIGINT/SIGTERM handling for the build loop.

    First signal: set ``requested`` and let the current story finish.
    Second signal: kill the running agent, remove the run marker, and exit
    with status 130.
    """

    def __init__(
        self,
        marker: Optional[RunMarker] = None,
        exit_fn: Callable[[int], None] = os._exit,
    ) -> None:
        self.marker = marker
        self.requested = False
        self.child: Optional[subprocess.Popen] = None
        self._exit = exit_fn
        self._previous: dict = {}

    def is_requested(self) -> bool:
        return self.requested

    def set_child(self, proc: Optional[subprocess.Popen]) -> None:
        """Record the agent process to kill on a hard stop."""
        self.child = proc

    def handle(self, signum, frame) -> None:
        if not self.requested:
            self.requested = True
            print(
                f"\n{Colors.YELLOW}Finishing the current story, "
                f"press Ctrl-C again to stop now.{Colors.NC}",
                file=sys.stderr,
            )
            return

        print(f"\n{Colors.RED}Stopping now.{Colors.NC}", file=sys.stderr)
        if self.child is not None and self.child.poll() is None:
            try:
                os.killpg(self.child.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                self.child.kill()
        if self.marker is not None:
            self.marker.remove()
        self._exit(INTERRUPT_EXIT_CODE)

    def install(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            self._previous[sig] = signal.signal(sig, self.handle)

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def __enter__(self) -> "InterruptHandler":
        self.install()
        return self

    def __exit__(self, *exc_info) -> None:
        self.restore()


__all__ = ["INTERRUPT_EXIT_CODE", "TwinLock", "RunMarker", "InterruptHandler"]
