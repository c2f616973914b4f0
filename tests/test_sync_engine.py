"""Tests for the sync engine."""

import hashlib
import io
import tempfile
from pathlib import Path
from typing import Optional
from unittest.mock import Mock

import httpx
import pytest
from rich.console import Console

from tragarz.api import TragarzClient
from tragarz.config import ConfigManager
from tragarz.exceptions import (
    TragarzConflictError,
    TragarzInvalidPathError,
    TragarzIOError,
    TragarzNetworkError,
    TragarzNotFoundError,
    TragarzTransferError,
)
from tragarz.output import OutputFormatter
from tragarz.sync import AutoConfirm, SyncEngine
from tragarz.sync.tree import parse_tree


def sha(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeServer:
    """In-memory stand-in for a project on the server."""

    def __init__(self, files: Optional[dict[str, bytes]] = None):
        self.files = dict(files or {})
        self.upload_calls: list[list[str]] = []

    def tree(self, project_name):
        return parse_tree(
            [
                {"path": path, "type": "file", "hash": sha(data), "size": len(data)}
                for path, data in self.files.items()
            ]
        )

    def upload(self, project_name, files):
        self.upload_calls.append([f.relative_path for f in files])
        stored = {}
        for local_file in files:
            data = local_file.path.read_bytes()
            self.files[local_file.relative_path] = data
            stored[local_file.relative_path] = sha(data)
        return stored

    def download(self, project_name, relative_path, output_path):
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.files[relative_path])
        return output_path

    def delete(self, project_name, relative_path):
        if relative_path not in self.files:
            raise TragarzNotFoundError("File not found")
        del self.files[relative_path]
        return {"success": True}


def write(root: Path, relative: str, data: bytes) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


class TestSyncEngine:
    """Test SyncEngine push, pull and status."""

    @pytest.fixture
    def temp_dir(self):
        """Create a temporary directory for testing."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def config_manager(self, temp_dir):
        manager = ConfigManager(temp_dir)
        manager.create("demo", "http://localhost:3000", "token")
        return manager

    @pytest.fixture
    def server(self):
        return FakeServer()

    @pytest.fixture
    def mock_client(self, server):
        """Create a mock Tragarz client backed by the fake server."""
        client = Mock(spec=TragarzClient)
        client.get_project_files.side_effect = server.tree
        client.upload_files.side_effect = server.upload
        client.download_file.side_effect = server.download
        client.delete_file.side_effect = server.delete
        return client

    @pytest.fixture
    def mock_output(self):
        """Create a mock output formatter."""
        output = Mock(spec=OutputFormatter)
        output.quiet = True
        output.json_output = False
        return output

    @pytest.fixture
    def engine(self, mock_client, config_manager, mock_output):
        return SyncEngine(mock_client, config_manager, output=mock_output)

    def baseline(self, config_manager):
        return config_manager.load().files

    # Push

    def test_push_uploads_new_files(self, engine, server, temp_dir, config_manager):
        """New local files are uploaded and recorded in the baseline."""
        write(temp_dir, "a.txt", b"a")
        write(temp_dir, "docs/b.md", b"b")

        stats = engine.push()

        assert stats["uploads"] == 2
        assert server.files == {"a.txt": b"a", "docs/b.md": b"b"}
        assert self.baseline(config_manager) == {"a.txt": sha(b"a"), "docs/b.md": sha(b"b")}

    def test_push_does_not_upload_state_files(self, engine, server, temp_dir):
        """.tragarz.json stays local."""
        write(temp_dir, "a.txt", b"a")

        engine.push()

        assert ".tragarz.json" not in server.files

    def test_push_then_push_again_is_empty(self, engine, server, temp_dir):
        """A second push after a successful one has nothing to do."""
        write(temp_dir, "a.txt", b"a")
        engine.push()

        stats = engine.push()

        assert stats["uploads"] == 0
        assert len(server.upload_calls) == 1

    def test_push_propagates_local_delete(self, engine, server, temp_dir, config_manager):
        """A file removed locally since the last sync is deleted on the server."""
        path = write(temp_dir, "a.txt", b"a")
        engine.push()
        path.unlink()

        stats = engine.push()

        assert stats["deletes_remote"] == 1
        assert server.files == {}
        assert self.baseline(config_manager) == {}

    def test_push_delete_already_gone_is_forgotten(self, engine, mock_client, config_manager):
        """A remote delete that finds nothing still clears the baseline entry."""
        engine.state.record("gone.txt", sha(b"x"))
        mock_client.get_project_files.side_effect = None
        mock_client.get_project_files.return_value = parse_tree(
            [{"path": "gone.txt", "type": "file", "hash": sha(b"x"), "size": 1}]
        )
        mock_client.delete_file.side_effect = TragarzNotFoundError("File not found")

        stats = engine.push()

        assert stats["deletes_remote"] == 1
        assert self.baseline(config_manager) == {}

    def test_push_new_server_file_is_not_deleted(self, engine, server, temp_dir):
        """A file only on the server with no baseline is left for pull."""
        server.files["remote.txt"] = b"r"

        stats = engine.push()

        assert stats["pending"] == 1
        assert "remote.txt" in server.files

    def test_push_conflict_aborts(self, engine, server, temp_dir, config_manager):
        """Conflicts stop a push and leave the baseline alone."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local edit")
        server.files["a.txt"] = b"server edit"

        with pytest.raises(TragarzConflictError) as exc_info:
            engine.push()

        assert exc_info.value.conflicts[0].relative_path == "a.txt"
        assert server.files["a.txt"] == b"server edit"
        assert self.baseline(config_manager) == {"a.txt": sha(b"base")}

    def test_push_force_overwrites_conflict(self, engine, server, temp_dir, config_manager):
        """--force uploads the local copy of conflicting files."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local edit")
        server.files["a.txt"] = b"server edit"

        stats = engine.push(force=True)

        assert stats["conflicts"] == 1
        assert server.files["a.txt"] == b"local edit"
        assert self.baseline(config_manager) == {"a.txt": sha(b"local edit")}

    def test_push_dry_run_changes_nothing(self, engine, server, mock_client, temp_dir, config_manager):
        """A dry run reports but neither uploads nor touches the baseline."""
        write(temp_dir, "a.txt", b"a")

        stats = engine.push(dry_run=True)

        assert stats["uploads"] == 1
        assert stats["dry_run"] is True
        mock_client.upload_files.assert_not_called()
        assert self.baseline(config_manager) == {}

    def test_push_plan_shows_bracketed_paths(self, mock_client, config_manager, temp_dir):
        """File names that look like rich markup are listed as they are."""
        write(temp_dir, "notes[red].txt", b"n")
        buffer = io.StringIO()
        output = OutputFormatter(console=Console(file=buffer, width=200, color_system=None))
        engine = SyncEngine(mock_client, config_manager, output=output)

        engine.push(dry_run=True)

        assert "notes[red].txt" in buffer.getvalue()

    def test_push_declined_confirmation(self, mock_client, config_manager, mock_output, server, temp_dir):
        """Declining the confirmation cancels without uploading."""
        write(temp_dir, "a.txt", b"a")
        engine = SyncEngine(
            mock_client, config_manager, output=mock_output, confirmer=AutoConfirm(False)
        )

        stats = engine.push()

        assert stats["cancelled"] is True
        assert server.files == {}

    def test_push_file_removed_before_upload(
        self, mock_client, config_manager, mock_output, server, temp_dir
    ):
        """A file deleted after the scan fails the push with TragarzIOError."""
        path = write(temp_dir, "a.txt", b"a")
        sent = []

        def handler(request):
            sent.append(request)
            return httpx.Response(200, json={"uploaded": []})

        client = TragarzClient("http://localhost:3000", token="token")
        client._client = httpx.Client(
            base_url=client.server_url, transport=httpx.MockTransport(handler)
        )
        mock_client.upload_files.side_effect = client.upload_files

        class DeletingConfirm:
            def confirm(self, message, default=False):
                path.unlink()
                return True

        engine = SyncEngine(
            mock_client, config_manager, output=mock_output, confirmer=DeletingConfirm()
        )

        with pytest.raises(TragarzIOError, match="a.txt"):
            engine.push()

        assert sent == []
        assert self.baseline(config_manager) == {}

    def test_push_uploads_in_batches(self, engine, server, temp_dir):
        """Uploads go out in batches of ten."""
        for i in range(25):
            write(temp_dir, f"f{i:02d}.txt", str(i).encode())

        engine.push()

        assert [len(batch) for batch in server.upload_calls] == [10, 10, 5]

    def test_push_failure_keeps_committed_batches(
        self, engine, server, mock_client, temp_dir, config_manager
    ):
        """A failing batch aborts the rest but keeps earlier baseline entries."""
        for i in range(15):
            write(temp_dir, f"f{i:02d}.txt", str(i).encode())
        calls = []

        def flaky_upload(project_name, files):
            calls.append(files)
            if len(calls) == 2:
                raise TragarzNetworkError("Connection failed")
            return server.upload(project_name, files)

        mock_client.upload_files.side_effect = flaky_upload

        with pytest.raises(TragarzNetworkError):
            engine.push()

        assert len(self.baseline(config_manager)) == 10

        # Resuming uploads only what is still pending
        mock_client.upload_files.side_effect = server.upload
        stats = engine.push()
        assert stats["uploads"] == 5

    def test_push_unconfirmed_upload_not_recorded(self, engine, mock_client, temp_dir, config_manager):
        """Paths the server did not report as stored stay out of the baseline."""
        write(temp_dir, "a.txt", b"a")
        write(temp_dir, "b.txt", b"b")
        mock_client.upload_files.side_effect = lambda project, files: {"a.txt": sha(b"a")}

        stats = engine.push()

        assert stats["uploads"] == 1
        assert self.baseline(config_manager) == {"a.txt": sha(b"a")}

    def test_push_hash_mismatch_not_recorded(self, engine, mock_client, temp_dir, config_manager):
        """A stored hash different from the local one is not recorded."""
        write(temp_dir, "a.txt", b"a")
        mock_client.upload_files.side_effect = lambda project, files: {"a.txt": sha(b"other")}

        stats = engine.push()

        assert stats["uploads"] == 0
        assert self.baseline(config_manager) == {}

    # Pull

    def test_pull_downloads_new_files(self, engine, server, temp_dir, config_manager):
        """Server files are downloaded and recorded with their verified hash."""
        server.files = {"a.txt": b"a", "docs/b.md": b"b"}

        stats = engine.pull()

        assert stats["downloads"] == 2
        assert (temp_dir / "docs" / "b.md").read_bytes() == b"b"
        assert self.baseline(config_manager) == {"a.txt": sha(b"a"), "docs/b.md": sha(b"b")}

    def test_pull_then_pull_again_is_empty(self, engine, server, mock_client):
        """Pulling twice transfers files only once."""
        server.files = {"a.txt": b"a"}
        engine.pull()

        stats = engine.pull()

        assert stats["downloads"] == 0
        assert mock_client.download_file.call_count == 1

    def test_pull_hash_mismatch_raises(self, engine, server, mock_client, temp_dir, config_manager):
        """A download whose content does not match the listing is rejected."""
        server.files = {"a.txt": b"good"}

        def corrupt(project_name, relative_path, output_path):
            output_path.write_bytes(b"truncated")
            return output_path

        mock_client.download_file.side_effect = corrupt

        with pytest.raises(TragarzTransferError, match="Hash mismatch"):
            engine.pull()

        assert self.baseline(config_manager) == {}
        assert not (temp_dir / "a.txt").exists()
        assert not [p for p in temp_dir.iterdir() if p.name.endswith(".download")]

        # Nothing bad was left behind for the next push to upload
        stats = engine.push()
        assert stats["uploads"] == 0
        assert server.files == {"a.txt": b"good"}

    def test_pull_hash_mismatch_keeps_local_copy(
        self, engine, server, mock_client, temp_dir, config_manager
    ):
        """A rejected download leaves the previous local version in place."""
        write(temp_dir, "a.txt", b"v1")
        engine.push()
        server.files["a.txt"] = b"v2"

        def corrupt(project_name, relative_path, output_path):
            output_path.write_bytes(b"v2 trunc")
            return output_path

        mock_client.download_file.side_effect = corrupt

        with pytest.raises(TragarzTransferError):
            engine.pull()

        assert (temp_dir / "a.txt").read_bytes() == b"v1"
        assert self.baseline(config_manager) == {"a.txt": sha(b"v1")}
        assert not [p for p in temp_dir.iterdir() if p.name.endswith(".download")]

        mock_client.download_file.side_effect = server.download
        stats = engine.push()
        assert stats["uploads"] == 0
        assert server.files["a.txt"] == b"v2"

    def test_pull_removes_files_deleted_on_server(self, engine, server, temp_dir, config_manager):
        """Unchanged local files gone from the server are removed with empty dirs."""
        write(temp_dir, "keep.txt", b"k")
        write(temp_dir, "docs/old.md", b"o")
        engine.push()
        del server.files["docs/old.md"]

        stats = engine.pull()

        assert stats["deletes_local"] == 1
        assert not (temp_dir / "docs").exists()
        assert (temp_dir / "keep.txt").exists()
        assert self.baseline(config_manager) == {"keep.txt": sha(b"k")}

    def test_pull_keep_local(self, engine, server, temp_dir):
        """--keep-local leaves files deleted on the server in place."""
        write(temp_dir, "old.md", b"o")
        engine.push()
        server.files.clear()

        stats = engine.pull(keep_local=True)

        assert stats["deletes_local"] == 0
        assert (temp_dir / "old.md").exists()

    def test_pull_does_not_remove_locally_modified(self, engine, server, temp_dir):
        """A file edited locally is kept even if the server dropped it."""
        write(temp_dir, "doc.md", b"v1")
        engine.push()
        server.files.clear()
        write(temp_dir, "doc.md", b"v2")

        stats = engine.pull()

        assert stats["deletes_local"] == 0
        assert stats["pending"] == 1
        assert (temp_dir / "doc.md").read_bytes() == b"v2"

    def test_pull_leaves_unpushed_local_files(self, engine, server, temp_dir):
        """Local-only files without a baseline are neither removed nor uploaded."""
        write(temp_dir, "new.txt", b"n")

        stats = engine.pull()

        assert stats["pending"] == 1
        assert (temp_dir / "new.txt").exists()
        assert server.files == {}

    def test_pull_conflict_aborts(self, engine, server, temp_dir):
        """Conflicts stop a pull by default."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local")
        server.files["a.txt"] = b"server"

        with pytest.raises(TragarzConflictError):
            engine.pull()

        assert (temp_dir / "a.txt").read_bytes() == b"local"

    def test_pull_backup_copies_conflicts_aside(self, engine, server, temp_dir, config_manager):
        """--backup saves the local copy, then takes the server's."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local")
        server.files["a.txt"] = b"server"

        stats = engine.pull(backup=True)

        assert (temp_dir / "a.txt").read_bytes() == b"server"
        backups = list((temp_dir / ".tragarz-backup").rglob("a.txt"))
        assert len(backups) == 1
        assert backups[0].read_bytes() == b"local"
        assert stats["backup_dir"] == str(backups[0].parent)
        assert self.baseline(config_manager) == {"a.txt": sha(b"server")}

    def test_pull_backup_dir_not_pushed(self, engine, server, temp_dir):
        """Backup copies are never uploaded."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local")
        server.files["a.txt"] = b"server"
        engine.pull(backup=True)

        engine.push()

        assert set(server.files) == {"a.txt"}

    def test_pull_force_overwrites_conflict(self, engine, server, temp_dir):
        """--force takes the server copy without a backup."""
        write(temp_dir, "a.txt", b"base")
        engine.push()
        write(temp_dir, "a.txt", b"local")
        server.files["a.txt"] = b"server"

        engine.pull(force=True)

        assert (temp_dir / "a.txt").read_bytes() == b"server"
        assert not (temp_dir / ".tragarz-backup").exists()

    def test_pull_rejects_escaping_server_path(self, engine, mock_client, temp_dir):
        """A server path outside the root never reaches the filesystem."""
        mock_client.get_project_files.side_effect = lambda name: parse_tree(
            [{"path": "../evil.txt", "type": "file", "hash": sha(b"x"), "size": 1}]
        )

        with pytest.raises(TragarzInvalidPathError):
            engine.pull()

        assert not (temp_dir.parent / "evil.txt").exists()

    # Status

    def test_status_reports_pending_changes(self, engine, server, temp_dir, config_manager):
        """status() describes the project and the pending change set."""
        write(temp_dir, "local.txt", b"l")
        server.files["remote.txt"] = b"r"

        info = engine.status()

        assert info["project"]["projectName"] == "demo"
        assert info["stats"] == {"uploads": 1, "downloads": 1, "deletes": 0, "conflicts": 0}
        assert info["changes"]["to_upload"] == ["local.txt"]
        assert self.baseline(config_manager) == {}
