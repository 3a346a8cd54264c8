# powerctl/state_store.py
import json
import logging
import os
import tempfile
import time
from typing import Callable, Dict, Optional, Protocol

from powerctl.models import PowerStateRecord

log = logging.getLogger("powerctl.state")

AUTOSLEEP_KEY = "autosleep"
POWER_KEY = "power"


class StateStore(Protocol):
    """Small key/value store for flat string documents. Writes replace the whole record."""

    def load(self, key: str) -> Dict[str, str]: ...

    def store(self, key: str, document: Dict[str, str]) -> None: ...


def atomic_write(path: str, data: str) -> None:
    """Write-then-rename so readers never see a partial file."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class FileStateStore:
    """One `KEY=value` file per record key under `state_dir`."""

    def __init__(self, state_dir: str):
        self.state_dir = state_dir

    def path(self, key: str) -> str:
        return os.path.join(self.state_dir, f"{key}.state")

    def load(self, key: str) -> Dict[str, str]:
        doc: Dict[str, str] = {}
        try:
            with open(self.path(key), encoding="utf-8") as fh:
                for raw in fh:
                    line = raw.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    k, v = line.split("=", 1)
                    doc[k.strip()] = v.strip()
        except FileNotFoundError:
            return {}
        return doc

    def store(self, key: str, document: Dict[str, str]) -> None:
        lines = [f"{k}={v}" for k, v in document.items()]
        atomic_write(self.path(key), "\n".join(lines) + "\n")


class SqlStateStore:
    """Same contract backed by a SQLAlchemy table (sqlite by default)."""

    def __init__(self, url: str, session_factory=None):
        if session_factory is None:
            from powerctl.db import make_session_factory
            session_factory = make_session_factory(url)
        self.SessionLocal = session_factory

    def load(self, key: str) -> Dict[str, str]:
        from powerctl.db import StateRecordRow
        session = self.SessionLocal()
        try:
            row = session.get(StateRecordRow, key)
            if row is None:
                return {}
            return {str(k): str(v) for k, v in json.loads(row.document).items()}
        finally:
            session.close()

    def store(self, key: str, document: Dict[str, str]) -> None:
        from powerctl.db import StateRecordRow
        session = self.SessionLocal()
        try:
            row = session.get(StateRecordRow, key)
            if row is None:
                row = StateRecordRow(key=key)
            row.document = json.dumps(document, sort_keys=True)
            row.updated_at = time.time()
            session.add(row)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def make_state_store(settings) -> StateStore:
    if settings.state_backend == "sql":
        return SqlStateStore(settings.state_db_url)
    return FileStateStore(settings.state_dir)


class PowerStateRepository:
    """Loads and saves the auto-sleep PowerStateRecord through a StateStore."""

    def __init__(self, store: StateStore, hostname: str, clock: Callable[[], float] = time.time):
        self.store = store
        self.hostname = hostname
        self.clock = clock

    def load(self) -> Optional[PowerStateRecord]:
        doc = self.store.load(AUTOSLEEP_KEY)
        if not doc:
            return None
        return PowerStateRecord.from_document(doc, self.hostname, self.clock())

    def load_or_create(self) -> PowerStateRecord:
        record = self.load()
        if record is None:
            record = PowerStateRecord.fresh(self.hostname, self.clock())
            self.save(record)
            log.info("Initialized power state for %s", self.hostname)
        return record

    def save(self, record: PowerStateRecord) -> None:
        self.store.store(AUTOSLEEP_KEY, record.to_document())
