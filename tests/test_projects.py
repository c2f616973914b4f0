"""Tests for the project store."""

import json
import tempfile
from pathlib import Path

import pytest

from tragarz.exceptions import (
    TragarzInvalidPathError,
    TragarzProjectExistsError,
    TragarzProjectNotFoundError,
)
from tragarz.projects import ProjectStore
from tragarz.sync.tree import DirectoryNode, flatten


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    return ProjectStore(temp_dir)


class TestProjectStore:
    """Tests for ProjectStore."""

    def test_create_lays_out_project(self, store):
        """create() makes the files and snapshots directories and metadata."""
        metadata = store.create("website", "My site")

        assert store.files_path("website").is_dir()
        assert store.snapshots_path("website").is_dir()
        on_disk = json.loads(store.metadata_path("website").read_text())
        assert on_disk == metadata
        assert metadata["description"] == "My site"
        assert metadata["fileCount"] == 0

    def test_create_existing_project(self, store):
        """Creating a project twice fails."""
        store.create("website")

        with pytest.raises(TragarzProjectExistsError):
            store.create("website")

    @pytest.mark.parametrize("name", ["", "../escape", "a b", "x" * 51, "dot.name"])
    def test_invalid_names_rejected(self, store, name):
        """Names outside [A-Za-z0-9_-]{1,50} are rejected."""
        with pytest.raises(TragarzInvalidPathError):
            store.create(name)

    def test_require_missing(self, store):
        """require() raises for unknown projects."""
        with pytest.raises(TragarzProjectNotFoundError):
            store.require("missing")

    def test_list_projects_sorted_by_last_modified(self, store):
        """Most recently modified projects come first."""
        store.create("first")
        store.create("second")
        path = store.metadata_path("first")
        data = json.loads(path.read_text())
        data["lastModified"] = "2999-01-01T00:00:00Z"
        path.write_text(json.dumps(data))

        names = [p["name"] for p in store.list_projects()]

        assert names == ["first", "second"]

    def test_list_projects_skips_invalid_directories(self, store, temp_dir):
        """Stray files and oddly named directories are not projects."""
        store.create("real")
        (temp_dir / "not a project").mkdir()
        (temp_dir / "stray.txt").write_text("x")

        assert [p["name"] for p in store.list_projects()] == ["real"]

    def test_list_projects_empty_data_dir(self, temp_dir):
        """A missing data directory lists nothing."""
        assert ProjectStore(temp_dir / "missing").list_projects() == []

    def test_project_info_counts_files(self, store):
        """project_info recalculates file count and size."""
        store.create("website")
        files = store.files_path("website")
        (files / "a.txt").write_bytes(b"12345")
        (files / "sub").mkdir()
        (files / "sub" / "b.txt").write_bytes(b"123")

        info = store.project_info("website")

        assert info["fileCount"] == 2
        assert info["totalSize"] == 8

    def test_touch_updates_last_modified(self, store):
        """touch() stamps a new lastModified and keeps other fields."""
        metadata = store.create("website", "desc")
        path = store.metadata_path("website")
        data = json.loads(path.read_text())
        data["lastModified"] = "2000-01-01T00:00:00Z"
        path.write_text(json.dumps(data))

        store.touch("website")

        data = json.loads(path.read_text())
        assert data["lastModified"] != "2000-01-01T00:00:00Z"
        assert data["id"] == metadata["id"]

    def test_file_tree(self, store):
        """file_tree describes the stored files."""
        store.create("website")
        files = store.files_path("website")
        (files / "css").mkdir()
        (files / "css" / "main.css").write_bytes(b"body{}")
        (files / "index.html").write_bytes(b"<html>")

        nodes = store.file_tree("website")

        assert isinstance(nodes[0], DirectoryNode)
        assert set(flatten(nodes)) == {"css/main.css", "index.html"}

    def test_resolve_file_rejects_escape(self, store):
        """Paths leaving the files root are rejected."""
        store.create("website")

        with pytest.raises(TragarzInvalidPathError):
            store.resolve_file("website", "../metadata.json")

    def test_resolve_file(self, store):
        """A valid path resolves under the files root."""
        store.create("website")

        path = store.resolve_file("website", "docs/readme.md")

        assert path == store.files_path("website") / "docs" / "readme.md"
