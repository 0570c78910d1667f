"""
File-backed usage cache.

Single JSON file shared by every hook process on the machine. Reads and
writes are whole-file; writes go through a temp file and an atomic rename so
readers never observe a torn snapshot. No locking: last writer wins.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..core.errors import CacheUnavailable
from .models import UsageSnapshot

logger = logging.getLogger(__name__)


class UsageCacheStore:
    """Read/write access to the cached usage snapshot."""

    def __init__(self, path: Union[str, Path]):
        """Initialize the store with a cache file path.

        Args:
            path: Path to the JSON cache file
        """
        self.path = Path(path)

    def read(self) -> Optional[UsageSnapshot]:
        """Return the cached snapshot, or None when there is no usable data.

        Never raises: missing files, permission errors, and malformed content
        all resolve to None.
        """
        try:
            return self._load()
        except CacheUnavailable as e:
            logger.debug("Usage cache unavailable at %s: %s", self.path, e)
            return None

    def write(self, snapshot: UsageSnapshot) -> bool:
        """Replace the cache file with ``snapshot``.

        Returns:
            True on success, False if the file could not be written
        """
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(snapshot.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
            return True
        except OSError as e:
            logger.warning("Failed to write usage cache %s: %s", self.path, e)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def is_stale(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        """True when there is no snapshot or it is at least ``ttl_seconds`` old."""
        snapshot = self.read()
        if snapshot is None:
            return True
        return snapshot.is_stale(ttl_seconds, now=now)

    def _load(self) -> UsageSnapshot:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            raise CacheUnavailable("cache file does not exist")
        except OSError as e:
            raise CacheUnavailable(f"cannot read cache file: {e}")
        except (ValueError, RecursionError) as e:
            raise CacheUnavailable(f"cache file is not valid JSON: {type(e).__name__}: {e}")
        return UsageSnapshot.from_dict(data)
