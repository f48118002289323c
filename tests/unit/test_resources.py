"""Unit tests for resource URI handling and materialization."""

import base64
import os
from pathlib import Path

import pytest

from aider_acp.resources import (
    ResourceWriteError,
    normalize_resource_uri,
    write_embedded_resource,
)


class TestNormalizeResourceUri:
    """Tests for normalize_resource_uri."""

    def test_file_uri_is_decoded(self) -> None:
        """file:// URIs are percent-decoded."""
        assert normalize_resource_uri("file:///work/my%20file.py", "/other") == "/work/my file.py"

    def test_absolute_path_normalized(self) -> None:
        """Absolute paths are normalized, not rebased."""
        assert normalize_resource_uri("/work/src/../app.py", "/other") == "/work/app.py"

    def test_relative_path_joined(self) -> None:
        """Relative paths are resolved against the working directory."""
        assert normalize_resource_uri("src/app.py", "/work") == os.path.normpath("/work/src/app.py")

    def test_whitespace_trimmed(self) -> None:
        """Surrounding whitespace is ignored."""
        assert normalize_resource_uri("  /work/a.py  ", "/x") == "/work/a.py"

    @pytest.mark.parametrize("uri", [None, "", "   "])
    def test_blank(self, uri: str | None) -> None:
        """Missing URIs normalize to None."""
        assert normalize_resource_uri(uri, "/work") is None


class TestWriteEmbeddedResource:
    """Tests for write_embedded_resource."""

    def test_writes_text(self, tmp_path: Path) -> None:
        """Text content is written as UTF-8."""
        target = tmp_path / "notes.md"
        write_embedded_resource(str(target), text="héllo\n")
        assert target.read_text(encoding="utf-8") == "héllo\n"

    def test_writes_blob(self, tmp_path: Path) -> None:
        """Blob content is base64-decoded."""
        target = tmp_path / "data.bin"
        payload = bytes(range(8))
        write_embedded_resource(str(target), blob=base64.b64encode(payload).decode())
        assert target.read_bytes() == payload

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        """Missing directories are created."""
        target = tmp_path / "a" / "b" / "c.txt"
        path = write_embedded_resource(str(target), text="x")
        assert path == target
        assert target.exists()

    def test_overwrites_existing(self, tmp_path: Path) -> None:
        """Existing files are replaced and no temp files are left."""
        target = tmp_path / "f.txt"
        target.write_text("old")

        write_embedded_resource(str(target), text="new")

        assert target.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["f.txt"]

    def test_no_content(self, tmp_path: Path) -> None:
        """A resource without text or blob is rejected."""
        with pytest.raises(ResourceWriteError):
            write_embedded_resource(str(tmp_path / "x"))

    def test_invalid_blob(self, tmp_path: Path) -> None:
        """Undecodable base64 is rejected."""
        with pytest.raises(ResourceWriteError):
            write_embedded_resource(str(tmp_path / "x"), blob="!!!not base64")

    def test_unwritable_target(self, tmp_path: Path) -> None:
        """Filesystem errors surface as ResourceWriteError."""
        blocker = tmp_path / "file"
        blocker.write_text("")
        with pytest.raises(ResourceWriteError):
            write_embedded_resource(str(blocker / "child.txt"), text="x")
