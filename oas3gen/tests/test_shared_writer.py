from pathlib import Path
from unittest.mock import patch

import pytest

from oas3gen.shared.errors import WriteFailed
from oas3gen.shared.writer import Artifact, Writer


class TestArtifact:
    def test_path(self, tmp_path: Path):
        artifact = Artifact("routes_gen.go", tmp_path, "package api\n")
        assert artifact.path == tmp_path / "routes_gen.go"


class TestWriter:
    def test_writes_content(self, tmp_path: Path):
        artifact = Artifact("routes_gen.go", tmp_path, "package api\n")
        written = Writer().write(artifact)
        assert written == tmp_path / "routes_gen.go"
        assert written.read_text(encoding="utf-8") == "package api\n"

    def test_truncates_previous_file(self, tmp_path: Path):
        target = tmp_path / "routes_gen.go"
        target.write_text("package api\n\n// a much longer previous version\n", encoding="utf-8")
        Writer().write(Artifact("routes_gen.go", tmp_path, "package api\n"))
        assert target.read_text(encoding="utf-8") == "package api\n"

    def test_explicit_path(self, tmp_path: Path):
        artifact = Artifact("routes_gen.go", tmp_path / "ignored", "x")
        written = Writer().write(artifact, tmp_path / "other.go")
        assert written == tmp_path / "other.go"
        assert written.read_text(encoding="utf-8") == "x"

    def test_missing_directory(self, tmp_path: Path):
        """The writer never creates directories."""
        artifact = Artifact("routes_gen.go", tmp_path / "missing", "x")
        with pytest.raises(WriteFailed, match="target directory does not exist"):
            Writer().write(artifact)
        assert not (tmp_path / "missing").exists()

    def test_no_temp_files_left(self, tmp_path: Path):
        Writer().write(Artifact("a.go", tmp_path, "x"))
        assert [p.name for p in tmp_path.iterdir()] == ["a.go"]

    @patch("oas3gen.shared.writer.os.replace")
    def test_replace_failure_cleans_up(self, mock_replace, tmp_path: Path):
        mock_replace.side_effect = OSError("read-only file system")
        with pytest.raises(WriteFailed, match="read-only file system"):
            Writer().write(Artifact("a.go", tmp_path, "x"))
        assert list(tmp_path.iterdir()) == []
