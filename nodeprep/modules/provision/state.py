"""Persisted provisioning state: checkpoints, completion markers and the run lock.

All records are small JSON documents under the configured state directory.
"""

import fcntl
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .errors import FilesystemWriteError, RunInProgressError
from .models import Checkpoint, RunMarker

logger = logging.getLogger("nodeprep.state")

PathLike = Union[str, Path]


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    """Atomically replace ``path`` with ``data`` serialized as JSON."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
                f.write('\n')
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
    except OSError as e:
        raise FilesystemWriteError(str(path), e) from e


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Return the parsed document, or None if missing or unreadable."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _remove(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FilesystemWriteError(str(path), e) from e


class CheckpointStore:
    """Stores one checkpoint per provisioner."""

    def __init__(self, directory: PathLike):
        self.directory = Path(directory)

    def path(self, provisioner: str) -> Path:
        return self.directory / f"{provisioner}.json"

    def load(self, provisioner: str) -> Optional[Checkpoint]:
        data = _read_json(self.path(provisioner))
        if data is None:
            return None
        try:
            checkpoint = Checkpoint.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Ignoring malformed checkpoint for %s: %s", provisioner, e)
            return None
        if checkpoint.provisioner != provisioner:
            logger.warning(
                "Ignoring checkpoint for %s recorded for %s",
                provisioner, checkpoint.provisioner,
            )
            return None
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        _write_json(self.path(checkpoint.provisioner), checkpoint.to_dict())

    def clear(self, provisioner: str) -> bool:
        removed = _remove(self.path(provisioner))
        if removed:
            logger.info("Cleared checkpoint for %s", provisioner)
        return removed


class MarkerStore:
    """Completion markers gating dependent provisioners."""

    def __init__(self, directory: PathLike):
        self.directory = Path(directory)

    def path(self, provisioner: str) -> Path:
        return self.directory / f"{provisioner}.json"

    def exists(self, provisioner: str) -> bool:
        return self.path(provisioner).exists()

    def read(self, provisioner: str) -> Optional[RunMarker]:
        """Return the marker if it exists and is valid for ``provisioner``."""
        data = _read_json(self.path(provisioner))
        if data is None:
            return None
        try:
            marker = RunMarker.from_dict(data)
        except (KeyError, TypeError) as e:
            logger.warning("Invalid marker %s: %s", self.path(provisioner), e)
            return None
        if marker.provisioner != provisioner:
            logger.warning(
                "Marker %s names provisioner %s, expected %s",
                self.path(provisioner), marker.provisioner, provisioner,
            )
            return None
        return marker

    def write(self, marker: RunMarker) -> Path:
        path = self.path(marker.provisioner)
        _write_json(path, marker.to_dict())
        logger.info("Created completion marker %s", path)
        return path

    def remove(self, provisioner: str) -> bool:
        removed = _remove(self.path(provisioner))
        if removed:
            logger.info("Removed completion marker for %s", provisioner)
        return removed


class RunLock:
    """Host-wide lock preventing concurrent provisioning runs.

    Exclusion comes from ``flock`` on the lock file, so a lock held by a
    process that died is released by the kernel. The file records the
    owner PID for error messages only; an empty file may still be held.
    """

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._fd: Optional[int] = None

    def owner(self) -> Optional[int]:
        """PID recorded in the lock file, if any."""
        try:
            text = self.path.read_text(encoding='utf-8').strip()
        except OSError:
            return None
        return int(text) if text.isdigit() else None

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise FilesystemWriteError(str(self.path), e) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise RunInProgressError(str(self.path), self.owner())
        except OSError as e:
            os.close(fd)
            raise FilesystemWriteError(str(self.path), e) from e

        previous = self.owner()
        if previous and previous != os.getpid():
            logger.warning("Taking over run lock %s left by pid %s", self.path, previous)
        try:
            os.ftruncate(fd, 0)
            os.write(fd, f"{os.getpid()}\n".encode())
        except OSError as e:
            os.close(fd)
            raise FilesystemWriteError(str(self.path), e) from e
        self._fd = fd
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
        except OSError as e:
            logger.warning("Could not clear run lock %s: %s", self.path, e)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> 'RunLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
