"""Project configuration stored in ``.tragarz.json``.

The file ties a working directory to a project on a server and carries the
sync baseline (``files``): the path->hash map last confirmed equal on both
sides.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import TragarzConfigError
from .utils import (
    BACKUP_DIR_NAME,
    CONFIG_FILE_NAME,
    IGNORE_FILE_NAME,
    format_iso_timestamp,
    is_valid_url,
    normalize_url,
    utc_now,
    validate_project_name,
    write_json_atomic,
)

logger = logging.getLogger(__name__)

SERVER_URL_ENV = "TRAGARZ_SERVER_URL"
TOKEN_ENV = "TRAGARZ_TOKEN"
DATA_DIR_ENV = "TRAGARZ_DATA_DIR"


@dataclass
class ProjectConfig:
    """Persisted link between a working directory and a server project."""

    project_name: str
    """Project name on the server"""

    server_url: str
    """Base URL of the server"""

    token: str
    """Session token issued by the server"""

    last_sync: Optional[str] = None
    """ISO timestamp of the last save"""

    files: dict[str, str] = field(default_factory=dict)
    """Baseline: relative path -> hash confirmed on both sides"""

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for JSON serialization."""
        return {
            "projectName": self.project_name,
            "serverUrl": self.server_url,
            "token": self.token,
            "lastSync": self.last_sync,
            "files": dict(sorted(self.files.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectConfig":
        """Create ProjectConfig from dictionary."""
        files = data.get("files")
        return cls(
            project_name=data.get("projectName", ""),
            server_url=data.get("serverUrl", ""),
            token=data.get("token", ""),
            last_sync=data.get("lastSync"),
            files=dict(files) if isinstance(files, dict) else {},
        )

    def validate(self) -> None:
        """Check required fields.

        Raises:
            TragarzConfigError: If a field is missing or malformed
        """
        if not self.project_name:
            raise TragarzConfigError("Missing required field: projectName")
        if not validate_project_name(self.project_name):
            raise TragarzConfigError(
                "Project name must be 1-50 letters, digits, '_' or '-'"
            )
        if not self.server_url:
            raise TragarzConfigError("Missing required field: serverUrl")
        if not is_valid_url(self.server_url):
            raise TragarzConfigError("Server URL must be a valid HTTP/HTTPS URL")
        if not self.token:
            raise TragarzConfigError("Missing required field: token")
        for path, value in self.files.items():
            if not isinstance(path, str) or not isinstance(value, str):
                raise TragarzConfigError(f"Malformed baseline entry: {path!r}")


class ConfigManager:
    """Loads and saves ``.tragarz.json`` for a working directory."""

    def __init__(self, working_dir: Optional[Path] = None):
        """Initialize config manager.

        Args:
            working_dir: Project directory. Defaults to the current directory.
        """
        self.working_dir = working_dir or Path.cwd()

    @property
    def config_path(self) -> Path:
        return self.working_dir / CONFIG_FILE_NAME

    @property
    def ignore_path(self) -> Path:
        return self.working_dir / IGNORE_FILE_NAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> ProjectConfig:
        """Load and validate the configuration.

        Raises:
            TragarzConfigError: If the file is missing, unreadable or invalid
        """
        if not self.config_path.exists():
            raise TragarzConfigError(
                f"Configuration file not found: {self.config_path}. "
                "Run `tragarz connect` first."
            )

        try:
            with open(self.config_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise TragarzConfigError(f"Failed to load configuration: {e}") from e

        if not isinstance(data, dict):
            raise TragarzConfigError("Failed to load configuration: not an object")

        config = ProjectConfig.from_dict(data)
        config.validate()
        logger.debug(
            f"Loaded config for {config.project_name} "
            f"with {len(config.files)} baseline entries"
        )
        return config

    def save(self, config: ProjectConfig) -> Path:
        """Validate, timestamp and write the configuration atomically.

        Returns:
            Path of the written file
        """
        config.validate()
        config.last_sync = format_iso_timestamp(utc_now())

        try:
            write_json_atomic(self.config_path, config.to_dict())
        except OSError as e:
            raise TragarzConfigError(f"Failed to save configuration: {e}") from e

        return self.config_path

    def create(self, project_name: str, server_url: str, token: str) -> ProjectConfig:
        """Create and save a fresh configuration with an empty baseline."""
        config = ProjectConfig(
            project_name=project_name,
            server_url=normalize_url(server_url),
            token=token,
        )
        self.save(config)
        return config

    def create_default_ignore(self) -> Path:
        """Write the default ``.tragarzignore`` unless one already exists."""
        if not self.ignore_path.exists():
            self.ignore_path.write_text(DEFAULT_IGNORE_CONTENT, encoding="utf-8")
            logger.debug(f"Created default ignore file at {self.ignore_path}")
        return self.ignore_path

    def project_info(self) -> Optional[dict[str, Any]]:
        """Summary of the configured project, or None if not configured."""
        if not self.exists():
            return None
        try:
            config = self.load()
        except TragarzConfigError as e:
            logger.warning(str(e))
            return None
        return {
            "projectName": config.project_name,
            "serverUrl": config.server_url,
            "lastSync": config.last_sync,
            "fileCount": len(config.files),
        }


DEFAULT_IGNORE_CONTENT = f"""# Tragarz ignore file
# OS generated files
.DS_Store
.DS_Store?
._*
.Spotlight-V100
.Trashes
ehthumbs.db
Thumbs.db

# Version control
.git/
.svn/
.hg/
.bzr/

# Dependencies
node_modules/
bower_components/
vendor/
__pycache__/
.venv/

# Build outputs
dist/
build/
out/
target/

# Logs
*.log
logs/

# Runtime data
pids/
*.pid
*.seed
*.pid.lock

# Coverage
coverage/

# Environment variables
.env
.env.local
.env.*.local

# IDE files
.vscode/
.idea/
*.swp
*.swo
*~

# Temporary files
tmp/
temp/
*.tmp
*.temp

# Tragarz state
{CONFIG_FILE_NAME}
{IGNORE_FILE_NAME}
{BACKUP_DIR_NAME}/
"""
