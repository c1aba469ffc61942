"""JSON file persistence helpers shared by the stores."""

import fcntl
import json
import os
import re
import tempfile
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import Any, Iterator

LOCKS_DIR = ".locks"

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


def safe_filename(key: str) -> str:
    """Map a storage key (e.g. 'user:42') to a filesystem-safe stem."""
    return _SAFE_KEY.sub("_", key)


def read_json(path: Path, default: Any = None) -> Any:
    """Load a JSON document, returning default if the file doesn't exist."""
    if not path.exists():
        return default

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Save a JSON document atomically.

    Uses write-to-temp-then-rename so readers never see a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}_", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def remove_file(path: Path) -> bool:
    """Delete a file if present. Returns True if something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


class KeyedLocks:
    """
    Exclusive per-key locks backed by flock on one lock file per key.

    Each acquisition opens its own file description, so locks serialize
    threads of one process as well as separate worker processes. Locks are
    not reentrant: never acquire a key that the current call already holds.
    """

    def __init__(self, base_dir: Path, namespace: str):
        self.lock_dir = base_dir / LOCKS_DIR / namespace

    def _path(self, key: str) -> Path:
        return self.lock_dir / f"{safe_filename(key)}.lock"

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Acquire exclusive lock on one key for a read-modify-write."""
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(key), "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    @contextmanager
    def hold_many(self, keys: list[str]) -> Iterator[None]:
        """Acquire several keys in sorted order so two callers can't deadlock."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield
