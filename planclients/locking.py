import datetime
import json
import os
import pathlib
import socket

from loguru import logger

from .errors import LockContention


class StateLock:
    """Exclusive lock on a state file, held for one whole write.

    The lock is a sibling "<file>.lock" created with O_EXCL, so a second writer
    fails fast with LockContention instead of waiting. Everything we compute is a
    pure function of the inputs, so a failed run can simply be retried.
    """

    def __init__(self, path):
        self.path = pathlib.Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self._held = False

    def acquire(self):
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise LockContention(self.path, self.holder()) from None

        with os.fdopen(fd, "w") as f:
            json.dump(
                dict(
                    host=socket.gethostname(),
                    pid=os.getpid(),
                    created=datetime.datetime.now(datetime.timezone.utc).isoformat(),
                ),
                f,
            )

        self._held = True
        logger.debug("[{}] Acquired lock", self.path)
        return self

    def release(self):
        if not self._held:
            return

        self.lock_path.unlink(missing_ok=True)
        self._held = False
        logger.debug("[{}] Released lock", self.path)

    def holder(self) -> str:
        try:
            info = json.loads(self.lock_path.read_text())
        except (OSError, ValueError):
            return ""

        return f"{info.get('host')} pid {info.get('pid')} since {info.get('created')}"

    def __enter__(self):
        return self.acquire()

    def __exit__(self, *exc):
        self.release()
        return False
