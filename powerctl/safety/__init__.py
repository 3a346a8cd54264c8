from .gate import GateDecision, SafetyGate
from .lock import FileLock, LockBackend, RedisLock, make_lock_backend

__all__ = ["GateDecision", "SafetyGate", "FileLock", "LockBackend", "RedisLock", "make_lock_backend"]
