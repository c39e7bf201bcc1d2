"""Crash-safe JSON documents.

Each persisted document (portfolio, trade journal, cooldown registry, daily
return series) lives at a stable path with a shadow copy at ``<path>.bak``.

Saving:
    1. the current primary, if it parses, is copied to the backup
    2. the new content is written to a temp file in the same directory
    3. the temp file atomically replaces the primary

Loading:
    1. a valid primary is returned as-is
    2. a corrupt (or missing) primary with a valid backup returns the backup's
       content and restores the primary from it
    3. otherwise the corrupt primary is quarantined as
       ``<name>.corrupt-<timestamp>`` and the default is returned

State is never reset silently: every recovery step is logged.
"""

import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Type, Union

from .logging_setup import logger


class JsonDocumentStore:
    def __init__(
        self,
        path: Union[str, Path],
        expected_type: Union[Type, Tuple[Type, ...]] = (dict, list),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.path = Path(path)
        self.expected_type = expected_type
        self.clock = clock

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def _read(self, path: Path) -> Any:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, self.expected_type):
            raise ValueError(f"unexpected document type {type(data).__name__} in {path}")
        return data

    def _try_read(self, path: Path) -> Tuple[bool, Any]:
        if not path.exists():
            return False, None
        try:
            return True, self._read(path)
        except (ValueError, UnicodeDecodeError, OSError) as e:
            logger.error(f"Corrupt state document | path={path} error={e}")
            return False, None

    def load(self, default_factory: Callable[[], Any]) -> Any:
        primary_exists = self.path.exists()
        ok, data = self._try_read(self.path)
        if ok:
            return data

        ok, data = self._try_read(self.backup_path)
        if ok:
            if primary_exists:
                self._quarantine()
            shutil.copy2(self.backup_path, self.path)
            logger.warning(f"State restored from backup | path={self.path}")
            return data

        if primary_exists:
            self._quarantine()
        return default_factory()

    def _quarantine(self) -> Optional[Path]:
        stamp = self.clock().strftime("%Y%m%d-%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        suffix = 1
        while target.exists():
            target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}-{suffix}")
            suffix += 1
        self.path.replace(target)
        logger.error(f"Corrupt state quarantined | path={self.path} moved_to={target.name}")
        return target

    def save(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # A corrupt primary must not overwrite a good backup.
        if self.path.exists():
            ok, _ = self._try_read(self.path)
            if ok:
                shutil.copy2(self.path, self.backup_path)

        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
