"""
================================================================================
PROMPTEDIT - OUTPUT NAMING & REGISTRY
================================================================================
Collision-resistant output names and name-only retrieval.

Names look like  cut_1718000000123_0007.mp4  or, for split segments,
split_2_1718000000123_0008.mp4. The millisecond timestamp plus a
process-wide sequence number keeps names unique across sequential and
concurrent plans; an existence check covers restarts within the same
millisecond.

Author: PromptEdit | v1.0
================================================================================
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputArtifact:
    """A named, engine-produced output file."""
    name: str
    path: Path


class OutputRegistry:
    """Allocates output names under one storage root and resolves them back."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def allocate(self, prefix: str, index: Optional[int] = None, ext: str = "mp4") -> OutputArtifact:
        """Reserve a previously-unused output name. Nothing is written yet."""
        stem = prefix if index is None else f"{prefix}_{index}"
        with self._lock:
            while True:
                name = f"{stem}_{int(time.time() * 1000)}_{next(self._sequence):04d}.{ext}"
                path = self.root / name
                if not path.exists():
                    return OutputArtifact(name=name, path=path)

    def resolve(self, name: str) -> OutputArtifact:
        """
        Look an artifact up by bare file name.

        Anything that is not a plain name inside the root (separators, "..",
        absolute paths, symlinks pointing elsewhere) is reported as not found.
        """
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise NotFoundError("File not found")

        root = self.root.resolve()
        candidate = (root / name).resolve()
        if candidate.parent != root or not candidate.is_file():
            raise NotFoundError("File not found")
        return OutputArtifact(name=name, path=candidate)

    def discard(self, artifacts: List[OutputArtifact]) -> int:
        """Delete artifacts written by an aborted plan. Returns how many were removed."""
        removed = 0
        for artifact in artifacts:
            try:
                artifact.path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"[OutputRegistry] Could not remove {artifact.name}: {e}")
        return removed

    def list(self) -> List[Dict[str, Any]]:
        """List the artifacts currently stored, newest first."""
        files = [p for p in self.root.iterdir() if p.is_file()]
        files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
        return [
            {
                "name": p.name,
                "size": p.stat().st_size,
                "last_modified": p.stat().st_mtime
            }
            for p in files
        ]
