"""
Scratch arena - ownership tracking for intermediate files.

Every stage that writes a new intermediate asks the arena for the path
(`<doc>_<suffix>.png` inside the temp dir) and releases the file it consumed.
The arena remembers every path it handed out, so when a document fails
mid-pipeline `close()` removes whatever is still on disk and nothing leaks.
"""

import logging
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ScratchArena:
    """Registry of the intermediates belonging to one working document."""

    def __init__(self, tmp_dir: PathLike, name: str):
        self.tmp_dir = Path(tmp_dir)
        self.name = name
        self._owned: List[Path] = []
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def __enter__(self) -> "ScratchArena":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def path_for(self, suffix: str, ext: str = ".png") -> Path:
        """Reserve the intermediate path for a stage suffix."""
        path = self.tmp_dir / f"{self.name}_{suffix}{ext}"
        self.adopt(path)
        return path

    def adopt(self, path: PathLike) -> Path:
        """Take ownership of an existing or future file."""
        path = Path(path)
        if path not in self._owned:
            self._owned.append(path)
        return path

    def owns(self, path: PathLike) -> bool:
        return Path(path) in self._owned

    @property
    def live(self) -> List[Path]:
        """Owned paths currently present on disk."""
        return [p for p in self._owned if p.exists()]

    def release(self, path: PathLike) -> None:
        """Delete a consumed file. Deleting a missing file is an error."""
        path = Path(path)
        path.unlink()
        if path in self._owned:
            self._owned.remove(path)

    def close(self) -> None:
        """Remove every owned file still on disk."""
        for path in self._owned:
            if path.exists():
                logger.debug("Removing leftover intermediate %s", path)
                path.unlink()
        self._owned.clear()
