# powerctl/safety/lock.py
import atexit
import fcntl
import json
import logging
import os
import signal
import socket
import tempfile
import time
from contextlib import contextmanager
from typing import Callable, Dict, Optional

import redis

from powerctl.errors import LockTimeout

log = logging.getLogger("powerctl.lock")

POWER_TRANSITION = "power-transition"
WAKE_BATCH = "wake-batch"
CLUSTER_SPINDOWN = "cluster-spindown"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def describe_holder(token: Optional[Dict]) -> str:
    if not token:
        return "unknown"
    return f"pid {token.get('pid')} on {token.get('host')}"


class LockBackend:
    """
    Named advisory locks shared by every powerctl process on a node (or a
    cluster, with redis). Subclasses implement `_try_acquire`, `_release`
    and `holder`.
    """

    def __init__(self, stale_seconds: float = 3600, hostname: Optional[str] = None, poll_interval: float = 1.0,
                 clock: Callable[[], float] = time.time, sleep: Callable[[float], None] = time.sleep):
        self.stale_seconds = stale_seconds
        self.hostname = hostname or socket.gethostname()
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep
        self._held = set()

    def _token(self) -> Dict:
        return {"pid": os.getpid(), "host": self.hostname, "acquired_at": self.clock()}

    def is_stale(self, token: Optional[Dict]) -> bool:
        if not token:
            return True
        try:
            acquired_at = float(token.get("acquired_at", 0))
            pid = int(token.get("pid", 0))
        except (TypeError, ValueError):
            return True
        if self.clock() - acquired_at > self.stale_seconds:
            return True
        if token.get("host") == self.hostname and not _pid_alive(pid):
            return True
        return False

    def acquire(self, name: str, timeout: float = 60) -> bool:
        deadline = self.clock() + max(0.0, timeout)
        while True:
            if self._try_acquire(name):
                self._held.add(name)
                log.debug("Acquired lock %s", name)
                return True
            holder = self.holder(name)
            if self.is_stale(holder):
                log.warning("Reclaiming stale lock %s held by %s", name, describe_holder(holder))
                self._break(name, holder)
                continue
            remaining = deadline - self.clock()
            if remaining <= 0:
                log.error("Timed out waiting for lock %s, held by %s", name, describe_holder(holder))
                return False
            self.sleep(min(self.poll_interval, remaining))

    def release(self, name: str) -> None:
        if name not in self._held:
            return
        self._held.discard(name)
        self._release(name)
        log.debug("Released lock %s", name)

    def release_all(self) -> None:
        for name in list(self._held):
            try:
                self.release(name)
            except Exception as e:
                log.warning("Failed to release lock %s: %s", name, e)

    @contextmanager
    def hold(self, name: str, timeout: float = 60):
        if not self.acquire(name, timeout):
            raise LockTimeout(name, describe_holder(self.holder(name)))
        try:
            yield self
        finally:
            self.release(name)

    def holder(self, name: str) -> Optional[Dict]:
        raise NotImplementedError

    def _try_acquire(self, name: str) -> bool:
        raise NotImplementedError

    def _release(self, name: str) -> None:
        raise NotImplementedError

    def _break(self, name: str, stale: Optional[Dict]) -> None:
        """Remove the lock only if it still carries the `stale` token."""
        raise NotImplementedError


class FileLock(LockBackend):
    """
    One file per lock name under `lock_dir`. The token is written to a temp
    file first and hard-linked into place, so the lock file is never seen
    half-written and creation is atomic.
    """

    def __init__(self, lock_dir: str, **kwargs):
        super().__init__(**kwargs)
        self.lock_dir = lock_dir

    def path(self, name: str) -> str:
        return os.path.join(self.lock_dir, f"{name}.lock")

    def _try_acquire(self, name: str) -> bool:
        os.makedirs(self.lock_dir, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{name}-", dir=self.lock_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._token(), fh)
            os.link(tmp, self.path(name))
            return True
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp)

    def holder(self, name: str) -> Optional[Dict]:
        try:
            with open(self.path(name), encoding="utf-8") as fh:
                content = fh.read().strip()
        except FileNotFoundError:
            return None
        try:
            return json.loads(content)
        except ValueError:
            # plain pid files from older tooling
            if content.isdigit():
                return {"pid": int(content), "host": self.hostname,
                        "acquired_at": os.path.getmtime(self.path(name))}
            return None

    @contextmanager
    def _guard(self):
        # every unlink happens under this flock, after re-reading the token
        os.makedirs(self.lock_dir, exist_ok=True)
        with open(os.path.join(self.lock_dir, ".guard"), "a") as fh:
            fcntl.flock(fh, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)

    def _unlink(self, name: str) -> None:
        try:
            os.unlink(self.path(name))
        except FileNotFoundError:
            pass

    def _break(self, name: str, stale: Optional[Dict]) -> None:
        with self._guard():
            current = self.holder(name)
            if current != stale:
                log.info("Lock %s changed hands before it was reclaimed, now held by %s",
                         name, describe_holder(current))
                return
            self._unlink(name)

    def _release(self, name: str) -> None:
        with self._guard():
            token = self.holder(name)
            if token and token.get("pid") != os.getpid():
                log.warning("Lock %s is now held by %s, not removing it", name, describe_holder(token))
                return
            self._unlink(name)


class RedisLock(LockBackend):
    """
    Same contract on a shared redis: SET NX with an expiry equal to the stale
    age, so a crashed holder ages out on its own.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None, prefix: str = "powerctl:lock:", **kwargs):
        super().__init__(**kwargs)
        self.redis_url = redis_url or "redis://127.0.0.1:6379/0"
        self.prefix = prefix
        self._redis = client
        self._values: Dict[str, str] = {}

    def _get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    def key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _try_acquire(self, name: str) -> bool:
        value = json.dumps(self._token())
        ok = self._get_redis().set(self.key(name), value, nx=True, ex=max(1, int(self.stale_seconds)))
        if ok:
            self._values[name] = value
        return bool(ok)

    def holder(self, name: str) -> Optional[Dict]:
        raw = self._get_redis().get(self.key(name))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def is_stale(self, token: Optional[Dict]) -> bool:
        # a vanished key is simply free; expiry handles the rest
        if token is None:
            return False
        return super().is_stale(token)

    def _break(self, name: str, stale: Optional[Dict]) -> None:
        if self.holder(name) == stale:
            self._get_redis().delete(self.key(name))

    def _release(self, name: str) -> None:
        value = self._values.pop(name, None)
        r = self._get_redis()
        current = r.get(self.key(name))
        if isinstance(current, bytes):
            current = current.decode()
        if value is not None and current == value:
            r.delete(self.key(name))


def _terminate(signum, frame):
    raise SystemExit(128 + signum)


def install_exit_handlers(locks: LockBackend) -> None:
    """Release held locks on normal exit and on SIGTERM."""
    atexit.register(locks.release_all)
    try:
        signal.signal(signal.SIGTERM, _terminate)
    except ValueError:
        # not the main thread
        pass


def make_lock_backend(settings, **kwargs) -> LockBackend:
    kwargs.setdefault("stale_seconds", settings.lock_stale_seconds)
    kwargs.setdefault("hostname", settings.hostname)
    if settings.lock_backend == "redis":
        return RedisLock(redis_url=settings.redis_url, **kwargs)
    return FileLock(settings.lock_dir, **kwargs)
