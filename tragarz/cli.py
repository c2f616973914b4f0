"""CLI interface for Tragarz."""

import logging
from pathlib import Path
from typing import Any, NoReturn, Optional

import click
from rich.markup import escape

from .api import TragarzClient
from .config import DATA_DIR_ENV, SERVER_URL_ENV, TOKEN_ENV, ConfigManager
from .exceptions import (
    TragarzAuthExpiredError,
    TragarzConflictError,
    TragarzError,
    TragarzNotFoundError,
    TragarzRestoreError,
)
from .output import OutputFormatter
from .projects import ProjectStore
from .snapshots import Snapshot, SnapshotEngine
from .sync import AutoConfirm, ClickConfirm, Confirmer, SyncEngine, tree_to_dict
from .utils import format_size, parse_iso_timestamp, validate_project_name

logger = logging.getLogger(__name__)


def _fail(ctx: Any, out: OutputFormatter, error: Exception) -> NoReturn:
    """Report ``error`` and exit with status 1."""
    if isinstance(error, TragarzConflictError):
        out.error(f"Conflicts detected: {len(error.conflicts)} file(s)")
        for conflict in error.conflicts:
            out.warning(
                f"  {conflict.relative_path}: local {conflict.local_hash[:8]}, "
                f"server {conflict.server_hash[:8]}, base {conflict.baseline_hash[:8]}"
            )
        out.warning("Re-run with --force to overwrite, or pull with --backup")
    elif isinstance(error, TragarzAuthExpiredError):
        out.error("Session expired. Run `tragarz connect --force` to log in again.")
    elif isinstance(error, TragarzRestoreError):
        out.error(str(error))
        if error.backup_id:
            out.warning(f"Files can be recovered from backup snapshot {error.backup_id}")
    else:
        out.error(str(error))
    raise click.exceptions.Exit(1)


def _confirmer(yes: bool) -> Confirmer:
    return AutoConfirm() if yes else ClickConfirm()


def _load_project(ctx: Any) -> tuple[ConfigManager, TragarzClient]:
    """Load the project configuration and build a client for it."""
    config_manager = ConfigManager(ctx.obj["dir"])
    config = config_manager.load()
    client = TragarzClient(config.server_url, token=ctx.obj["token"] or config.token)
    return config_manager, client


@click.group()
@click.option(
    "--dir",
    "-C",
    "working_dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Project directory (default: current directory)",
)
@click.option("--token", envvar=TOKEN_ENV, hidden=True, help="Session token override")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="tragarz")
@click.pass_context
def main(
    ctx: Any,
    working_dir: Path,
    token: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """Tragarz - keep a local directory in sync with a project on a server."""
    ctx.ensure_object(dict)
    ctx.obj["dir"] = working_dir.resolve()
    ctx.obj["token"] = token
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("tragarz").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("project_name")
@click.argument("server_url", envvar=SERVER_URL_ENV)
@click.option(
    "--password",
    "-p",
    prompt="Server password",
    hide_input=True,
    help="Server password",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.option("--description", "-d", default="", help="Description for a new project")
@click.option("--no-download", is_flag=True, help="Skip downloading existing files")
@click.pass_context
def connect(
    ctx: Any,
    project_name: str,
    server_url: str,
    password: str,
    force: bool,
    description: str,
    no_download: bool,
) -> None:
    """Connect the directory to PROJECT_NAME on SERVER_URL.

    Creates the project on the server if it does not exist yet, writes
    .tragarz.json and a default .tragarzignore, and downloads the files of
    an existing project.
    """
    out: OutputFormatter = ctx.obj["out"]
    config_manager = ConfigManager(ctx.obj["dir"])

    if not validate_project_name(project_name):
        out.error("Project name can only contain letters, numbers, hyphens and underscores (max 50)")
        ctx.exit(1)
    if config_manager.exists() and not force:
        out.error("Project already initialized. Use --force to overwrite.")
        ctx.exit(1)

    try:
        client = TragarzClient(server_url)
        out.info("Connecting to server...")
        token = client.authenticate(password)["token"]
        out.success("Authentication successful")

        try:
            client.get_project_info(project_name)
            project_exists = True
            out.info(f'Project "{project_name}" found on server')
        except TragarzNotFoundError:
            project_exists = False
            client.create_project(project_name, description)
            out.success(f'Created new project "{project_name}"')

        config_manager.create(project_name, client.server_url, token)
        config_manager.create_default_ignore()

        stats = None
        if project_exists and not no_download:
            engine = SyncEngine(client, config_manager, output=out)
            stats = engine.pull()

        if out.json_output:
            out.output_json(
                {
                    "projectName": project_name,
                    "serverUrl": client.server_url,
                    "created": not project_exists,
                    "pull": stats,
                }
            )
        else:
            out.success("Successfully connected to Tragarz!")
            out.info(f"  Name: {project_name}")
            out.info(f"  Server: {escape(client.server_url)}")
            out.info(f"  Status: {'Existing project' if project_exists else 'New project'}")
    except KeyboardInterrupt:
        out.warning("\nConnect cancelled by user")
        ctx.exit(130)
    except TragarzError as e:
        _fail(ctx, out, e)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite the server copy on conflicts")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Show what would be uploaded")
@click.pass_context
def push(ctx: Any, force: bool, yes: bool, dry_run: bool) -> None:
    """Upload local changes to the server.

    Files changed locally since the last sync are uploaded and files deleted
    locally are deleted on the server. Conflicts (both sides changed) stop
    the push unless --force is given.
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        config_manager, client = _load_project(ctx)
        with client:
            engine = SyncEngine(client, config_manager, output=out, confirmer=_confirmer(yes))
            stats = engine.push(force=force, dry_run=dry_run)
        if out.json_output:
            out.output_json(stats)
    except KeyboardInterrupt:
        out.warning("\nPush cancelled by user")
        ctx.exit(130)
    except TragarzError as e:
        _fail(ctx, out, e)


@main.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite local copies on conflicts")
@click.option(
    "--backup", "-b", is_flag=True, help="Back up conflicting local files, then overwrite"
)
@click.option("--keep-local", is_flag=True, help="Keep local files deleted on the server")
@click.option("--trash", is_flag=True, help="Move removed local files to the system trash")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--dry-run", is_flag=True, help="Show what would be downloaded")
@click.pass_context
def pull(
    ctx: Any,
    force: bool,
    backup: bool,
    keep_local: bool,
    trash: bool,
    yes: bool,
    dry_run: bool,
) -> None:
    """Download changes from the server.

    Conflicting files stop the pull unless --force or --backup is given.
    --backup copies them to .tragarz-backup/<timestamp>/ first.
    """
    out: OutputFormatter = ctx.obj["out"]

    if force and backup:
        out.error("Use either --force or --backup, not both")
        ctx.exit(1)

    try:
        config_manager, client = _load_project(ctx)
        with client:
            engine = SyncEngine(
                client,
                config_manager,
                output=out,
                confirmer=_confirmer(yes),
                use_trash=trash,
            )
            stats = engine.pull(
                force=force, backup=backup, keep_local=keep_local, dry_run=dry_run
            )
        if out.json_output:
            out.output_json(stats)
    except KeyboardInterrupt:
        out.warning("\nPull cancelled by user")
        ctx.exit(130)
    except TragarzError as e:
        _fail(ctx, out, e)


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show project information and pending changes."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        config_manager, client = _load_project(ctx)
        with client:
            engine = SyncEngine(client, config_manager, output=out)
            info = engine.status()
    except TragarzError as e:
        _fail(ctx, out, e)

    if out.json_output:
        out.output_json(info)
        return

    project = info["project"]
    out.print(f"[bold]{project['projectName']}[/bold] on {escape(project['serverUrl'])}")
    out.info(f"  Last sync: {project['lastSync'] or 'never'}")
    out.info(f"  Tracked files: {project['trackedFiles']}")
    out.info(f"  Local files: {info['localFiles']}, server files: {info['serverFiles']}")

    changes = info["changes"]
    rows = [[path, "upload"] for path in changes["to_upload"]]
    rows += [[path, "download"] for path in changes["to_download"]]
    rows += [[path, "delete on server"] for path in changes["to_delete"]]
    rows += [[c["path"], "conflict"] for c in changes["conflicts"]]
    if rows:
        out.output_table(["Path", "Pending"], rows, title="Pending changes")
    else:
        out.success("Everything is in sync")


def _snapshot_rows(snapshots: list[Snapshot]) -> list[list[str]]:
    return [
        [
            s.id,
            "auto" if s.is_auto_backup else "",
            s.description or "(no description)",
            s.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            str(s.file_count),
            format_size(s.size_bytes),
        ]
        for s in snapshots
    ]


SNAPSHOT_COLUMNS = ["ID", "Type", "Description", "Created", "Files", "Size"]


@main.command()
@click.argument("description", required=False, default="")
@click.option("--list", "-l", "list_snapshots", is_flag=True, help="List all snapshots")
@click.option("--restore", "-r", "restore_id", help="Restore from snapshot ID")
@click.option("--no-backup", is_flag=True, help="Don't create a backup when restoring")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts")
@click.pass_context
def memory(
    ctx: Any,
    description: str,
    list_snapshots: bool,
    restore_id: Optional[str],
    no_backup: bool,
    yes: bool,
) -> None:
    """Create, list or restore snapshots of the project on the server."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        config_manager, client = _load_project(ctx)
        project_name = config_manager.load().project_name
        with client:
            if list_snapshots:
                records = client.list_snapshots(project_name)
                snapshots = [Snapshot.from_dict(r) for r in records]
                if out.json_output:
                    out.output_json([s.to_dict() for s in snapshots])
                elif not snapshots:
                    out.warning("No snapshots found.")
                else:
                    out.output_table(
                        SNAPSHOT_COLUMNS,
                        _snapshot_rows(snapshots),
                        title=f"Snapshots for {project_name}",
                    )
                return

            if restore_id:
                if not yes and not click.confirm(
                    f"Restore snapshot {restore_id}? Current server files will be replaced."
                ):
                    out.info("Restore cancelled")
                    return
                result = client.restore_snapshot(project_name, restore_id, backup=not no_backup)
                if out.json_output:
                    out.output_json(result)
                else:
                    out.success(f"Restored snapshot {restore_id}")
                    if result.get("backupId"):
                        out.info(f"  Backup: {result['backupId']}")
                    out.info("Run `tragarz pull` to update your local files")
                return

            record = client.create_snapshot(project_name, description)
    except TragarzError as e:
        _fail(ctx, out, e)
    except ValueError as e:
        _fail(ctx, out, TragarzError(f"Malformed snapshot record: {e}"))

    if out.json_output:
        out.output_json(record)
        return
    created = parse_iso_timestamp(record.get("createdAt"))
    out.success(f"Snapshot {record.get('id')} saved!")
    out.info(f"  Description: {escape(record.get('description') or '(no description)')}")
    if created:
        out.info(f"  Created: {created.strftime('%Y-%m-%d %H:%M:%S')}")
    out.info(f"  Files: {record.get('fileCount', 0)}")
    out.info(f"  Size: {format_size(record.get('sizeBytes', record.get('size', 0)))}")


# =========================
# Local data directory
# =========================


@main.group()
@click.option(
    "--data-dir",
    envvar=DATA_DIR_ENV,
    type=click.Path(file_okay=False, path_type=Path),
    required=True,
    help="Server data directory",
)
@click.pass_context
def store(ctx: Any, data_dir: Path) -> None:
    """Manage projects and snapshots in a server data directory."""
    project_store = ProjectStore(data_dir)
    ctx.obj["store"] = project_store
    ctx.obj["snapshots"] = SnapshotEngine(project_store)


@store.command("create")
@click.argument("project_name")
@click.option("--description", "-d", default="", help="Project description")
@click.pass_context
def store_create(ctx: Any, project_name: str, description: str) -> None:
    """Create an empty project."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        metadata = ctx.obj["store"].create(project_name, description)
    except TragarzError as e:
        _fail(ctx, out, e)
    if out.json_output:
        out.output_json(metadata)
    else:
        out.success(f"Created project {project_name}")


@store.command("projects")
@click.pass_context
def store_projects(ctx: Any) -> None:
    """List projects."""
    out: OutputFormatter = ctx.obj["out"]
    projects = ctx.obj["store"].list_projects()
    if out.json_output:
        out.output_json(projects)
    elif not projects:
        out.warning("No projects found.")
    else:
        rows = [[p["name"], p.get("description", ""), p.get("lastModified", "")] for p in projects]
        out.output_table(["Name", "Description", "Last modified"], rows, title="Projects")


@store.command("files")
@click.argument("project_name")
@click.pass_context
def store_files(ctx: Any, project_name: str) -> None:
    """Print the file tree of PROJECT_NAME as served to clients."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        nodes = ctx.obj["store"].file_tree(project_name)
    except TragarzError as e:
        _fail(ctx, out, e)
    out.output_json({"files": tree_to_dict(nodes)})


@store.command("snapshot")
@click.argument("project_name")
@click.argument("description", required=False, default="")
@click.pass_context
def store_snapshot(ctx: Any, project_name: str, description: str) -> None:
    """Create a snapshot of PROJECT_NAME."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        snapshot = ctx.obj["snapshots"].create_snapshot(project_name, description)
    except TragarzError as e:
        _fail(ctx, out, e)
    if out.json_output:
        out.output_json(snapshot.to_dict())
    else:
        out.success(f"Snapshot {snapshot.id} saved!")
        out.info(f"  Files: {snapshot.file_count}, size: {format_size(snapshot.size_bytes)}")


@store.command("snapshots")
@click.argument("project_name")
@click.pass_context
def store_snapshots(ctx: Any, project_name: str) -> None:
    """List snapshots of PROJECT_NAME, newest first."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        snapshots = ctx.obj["snapshots"].list_snapshots(project_name)
    except TragarzError as e:
        _fail(ctx, out, e)
    if out.json_output:
        out.output_json([s.to_dict() for s in snapshots])
    elif not snapshots:
        out.warning("No snapshots found.")
    else:
        out.output_table(
            SNAPSHOT_COLUMNS, _snapshot_rows(snapshots), title=f"Snapshots for {project_name}"
        )


@store.command("restore")
@click.argument("project_name")
@click.argument("snapshot_id")
@click.option("--no-backup", is_flag=True, help="Don't snapshot the current files first")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def store_restore(
    ctx: Any, project_name: str, snapshot_id: str, no_backup: bool, yes: bool
) -> None:
    """Replace the files of PROJECT_NAME with SNAPSHOT_ID."""
    out: OutputFormatter = ctx.obj["out"]
    if not yes and not click.confirm(
        f"Restore snapshot {snapshot_id}? Current files of {project_name} will be replaced."
    ):
        out.info("Restore cancelled")
        return
    try:
        result = ctx.obj["snapshots"].restore_snapshot(
            project_name, snapshot_id, with_backup=not no_backup
        )
    except TragarzError as e:
        _fail(ctx, out, e)
    if out.json_output:
        out.output_json({"restored": result.restored.to_dict(), "backupId": result.backup_id})
    else:
        out.success(f"Restored snapshot {snapshot_id}")
        if result.backup_id:
            out.info(f"  Backup: {result.backup_id}")


@store.command("delete")
@click.argument("project_name")
@click.argument("snapshot_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def store_delete(ctx: Any, project_name: str, snapshot_id: str, yes: bool) -> None:
    """Delete SNAPSHOT_ID of PROJECT_NAME."""
    out: OutputFormatter = ctx.obj["out"]
    if not yes and not click.confirm(f"Delete snapshot {snapshot_id}?"):
        out.info("Delete cancelled")
        return
    try:
        ctx.obj["snapshots"].delete_snapshot(project_name, snapshot_id)
    except TragarzError as e:
        _fail(ctx, out, e)
    out.success(f"Deleted snapshot {snapshot_id}")


if __name__ == "__main__":
    main()
