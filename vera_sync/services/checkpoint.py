# vera_sync/services/checkpoint.py
"""
Durable per-pipeline cursor, stored as decimal text in a file outside the
databases. The value is the next verified-contract id to process.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from vera_sync.errors import CheckpointError

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT = 1


class FileCheckpointStore:
    def __init__(self, directory, name: str, default: int = DEFAULT_CHECKPOINT):
        self.path = Path(directory) / name
        self.name = name
        self.default = default
        self._current: Optional[int] = None

    def load(self) -> int:
        """Read the cursor; a missing file means `default`."""
        if not self.path.exists():
            self._current = self.default
            return self._current
        raw = self.path.read_text(encoding="utf-8").strip()
        try:
            value = int(raw, 10)
        except ValueError:
            raise CheckpointError(f"{self.path}: not a decimal integer: {raw!r}") from None
        if value < 1:
            raise CheckpointError(f"{self.path}: checkpoint must be >= 1, got {value}")
        self._current = value
        return value

    @property
    def current(self) -> int:
        if self._current is None:
            return self.load()
        return self._current

    def save(self, value: int) -> None:
        """Persist a new cursor. The cursor never moves backwards."""
        value = int(value)
        if value < self.current:
            raise CheckpointError(
                f"{self.name}: refusing to move checkpoint back from {self.current} to {value}"
            )
        if value == self._current and self.path.exists():
            return
        self._write(value)

    def reset(self, value: int) -> None:
        """Operator override: set the cursor to any value >= 1, backwards included."""
        value = int(value)
        if value < 1:
            raise CheckpointError(f"{self.name}: checkpoint must be >= 1, got {value}")
        self._write(value)
        logger.warning("Checkpoint reset", extra={"pipeline": self.name, "checkpoint": value})

    def _write(self, value: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # write-then-rename so a crash never leaves a truncated file behind
        fd, tmp = tempfile.mkstemp(prefix=f".{self.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(str(value))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        self._current = value
