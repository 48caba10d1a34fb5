"""Whole-file replacement of generated artifacts."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import WriteFailed


@dataclass(frozen=True, slots=True)
class Artifact:
    """A rendered output file."""

    file_name: str
    directory: Path
    content: str

    @property
    def path(self) -> Path:
        return self.directory / self.file_name


class Writer:
    """Writes artifacts, replacing any previous file atomically."""

    def write(self, artifact: Artifact, file_path: Path | None = None) -> Path:
        """Write an artifact to disk.

        Args:
            artifact: The rendered artifact.
            file_path: Destination, defaults to ``artifact.path``.

        Returns:
            The path that was written.

        Raises:
            WriteFailed: If the target directory is missing or the write fails.
        """
        target = Path(file_path) if file_path is not None else artifact.path
        directory = target.parent
        if not directory.is_dir():
            raise WriteFailed(
                str(target),
                "target directory does not exist",
                hints=(f"Create '{directory}' before running the generator",),
            )

        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(artifact.content)
            os.replace(temp_name, target)
        except OSError as e:
            Path(temp_name).unlink(missing_ok=True)
            raise WriteFailed(str(target), str(e)) from e

        return target
