"""Per-job temporary file ownership."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class TempWorkspace:
    """
    A private temp directory plus the set of files allocated inside it.

    `cleanup()` is idempotent and removes every allocated path (and the
    directory itself), whatever state the files are in.
    """

    def __init__(self, root: Optional[str] = None, prefix: str = "relay-"):
        self.root = root
        self.prefix = prefix
        self.directory: Optional[Path] = None
        self.paths: set[Path] = set()
        self.closed = False

    def allocate(self, name: str) -> Path:
        """Reserve a path for a temp file; the directory is created lazily."""
        if self.closed:
            raise RuntimeError("workspace already cleaned up")
        if self.directory is None:
            if self.root:
                os.makedirs(self.root, exist_ok=True)
            self.directory = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.root))
            logger.debug(f"[WORKSPACE] Created {self.directory}")
        path = self.directory / name
        self.paths.add(path)
        return path

    def discard(self, path: Path) -> None:
        """Remove one file now (e.g. a partial download)."""
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[WORKSPACE] Could not remove {path}: {e}")

    def cleanup(self) -> None:
        if self.closed:
            return
        self.closed = True
        for path in self.paths:
            self.discard(path)
        if self.directory is not None:
            shutil.rmtree(self.directory, ignore_errors=True)
            logger.debug(f"[WORKSPACE] Removed {self.directory} ({len(self.paths)} file(s))")

    def __enter__(self) -> "TempWorkspace":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
