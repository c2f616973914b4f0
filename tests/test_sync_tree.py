"""Tests for the server file tree."""

import hashlib
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tragarz.exceptions import TragarzInvalidPathError
from tragarz.sync.tree import (
    DirectoryNode,
    FileNode,
    build_tree,
    flatten,
    parse_tree,
    tree_to_dict,
)

H1 = "a" * 64
H2 = "b" * 64


class TestParseTree:
    """Tests for parse_tree."""

    def test_parse_nested_listing(self):
        """Files and directories become tagged nodes with full paths."""
        data = [
            {"path": "README.md", "type": "file", "hash": H1, "size": 5,
             "modified": "2025-01-15T10:30:00.000Z"},
            {
                "path": "docs",
                "type": "directory",
                "children": [
                    {"path": "docs/guide.md", "type": "file", "hash": H2, "size": 7},
                ],
            },
        ]

        nodes = parse_tree(data)

        assert isinstance(nodes[0], DirectoryNode)
        assert nodes[0].path == "docs"
        assert isinstance(nodes[0].children[0], FileNode)
        assert nodes[0].children[0].path == "docs/guide.md"
        assert isinstance(nodes[1], FileNode)
        assert nodes[1].record.modified == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_children_with_names_only_are_joined(self):
        """Child paths relative to their directory get the parent prefixed."""
        data = [
            {"path": "src", "type": "directory", "children": [
                {"path": "main.py", "type": "file", "hash": H1, "size": 1},
            ]},
        ]

        assert list(flatten(parse_tree(data))) == ["src/main.py"]

    def test_backslashes_normalized(self):
        """Windows separators are turned into forward slashes."""
        data = [{"path": "dir\\file.txt", "type": "file", "hash": H1, "size": 1}]

        assert list(flatten(parse_tree(data))) == ["dir/file.txt"]

    def test_unknown_type_skipped(self):
        """Nodes with an unknown type are ignored."""
        data = [
            {"path": "link", "type": "symlink"},
            {"path": "a.txt", "type": "file", "hash": H1, "size": 1},
        ]

        assert list(flatten(parse_tree(data))) == ["a.txt"]

    @pytest.mark.parametrize("path", ["../etc/passwd", "/etc/passwd", "a/../../b", "C:/x"])
    def test_escaping_path_rejected(self, path):
        """Paths leaving the project root are rejected."""
        with pytest.raises(TragarzInvalidPathError):
            parse_tree([{"path": path, "type": "file", "hash": H1, "size": 1}])


class TestFlatten:
    """Tests for flatten."""

    def test_flatten_collects_files_only(self):
        """Directories contribute their files, not themselves."""
        data = [
            {"path": "a", "type": "directory", "children": [
                {"path": "a/b", "type": "directory", "children": [
                    {"path": "a/b/c.txt", "type": "file", "hash": H1, "size": 3},
                ]},
            ]},
            {"path": "top.txt", "type": "file", "hash": H2, "size": 4},
        ]

        flat = flatten(parse_tree(data))

        assert set(flat) == {"a/b/c.txt", "top.txt"}
        assert flat["a/b/c.txt"].hash == H1
        assert flat["top.txt"].size == 4

    def test_flatten_empty(self):
        """An empty tree flattens to an empty map."""
        assert flatten(()) == {}


class TestBuildTree:
    """Tests for build_tree."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for testing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_directories_first_then_lexicographic(self, temp_dir):
        """Nodes are ordered directories first, then by path."""
        (temp_dir / "b.txt").write_bytes(b"b")
        (temp_dir / "a.txt").write_bytes(b"a")
        (temp_dir / "zdir").mkdir()
        (temp_dir / "zdir" / "x.txt").write_bytes(b"x")
        (temp_dir / "adir").mkdir()

        nodes = build_tree(temp_dir)

        assert [n.path for n in nodes] == ["adir", "zdir", "a.txt", "b.txt"]
        assert nodes[1].children[0].path == "zdir/x.txt"
        assert nodes[1].children[0].record.hash == hashlib.sha256(b"x").hexdigest()

    def test_round_trip_through_json_listing(self, temp_dir):
        """A built tree serializes and parses back to the same files."""
        (temp_dir / "docs").mkdir()
        (temp_dir / "docs" / "a.md").write_bytes(b"hello")
        (temp_dir / "top.txt").write_bytes(b"top")

        nodes = build_tree(temp_dir)
        parsed = parse_tree(tree_to_dict(nodes))

        original = {p: r.hash for p, r in flatten(nodes).items()}
        assert {p: r.hash for p, r in flatten(parsed).items()} == original
