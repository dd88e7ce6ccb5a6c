"""
Configuration management for Markdown ⇄ Notion sync.

Loads settings from environment variables and provides
structured configuration for all sync components.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .git_handler import detect_project_name


DEFAULT_DOCS_DIR = "docs"
DEFAULT_CONCURRENCY = 6
DEFAULT_RATE_LIMIT = 3


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable configuration."""


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() == "true"


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be at least {minimum}, got {value}")
    return value


@dataclass
class Config:
    """
    Central configuration for the sync system.

    Loads from environment variables and provides defaults.
    All secrets are loaded from env vars - never hardcoded.
    """

    # Notion settings
    notion_token: str
    notion_database_id: str

    # Paths
    repo_root: Path
    docs_dir: Path

    # Project tag written to every page and used to scope pulls
    project_name: str

    # Sync behavior
    concurrency: int = DEFAULT_CONCURRENCY
    rate_limit: int = DEFAULT_RATE_LIMIT
    title_category_prefix: bool = False
    debug: bool = False

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        require_credentials: bool = True,
    ) -> "Config":
        """
        Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file. If not provided,
                     looks for .env in current directory.
            require_credentials: Whether the Notion token and database ID
                     must be present. Local-only commands pass False.

        Returns:
            Configured Config instance.

        Raises:
            ConfigError: If required environment variables are missing
                        or malformed.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        notion_token = os.getenv("NOTION_TOKEN", "")
        notion_database_id = os.getenv("NOTION_DATABASE_ID", "")

        if require_credentials:
            if not notion_token:
                raise ConfigError(
                    "NOTION_TOKEN environment variable is required.\n"
                    "Create a Notion integration at https://www.notion.so/my-integrations"
                )
            if not notion_database_id:
                raise ConfigError(
                    "NOTION_DATABASE_ID environment variable is required.\n"
                    "This should be the ID of the database your documents live in."
                )

        concurrency = _env_int("CONCURRENCY", DEFAULT_CONCURRENCY)
        rate_limit = _env_int("NOTION_RATE_LIMIT", DEFAULT_RATE_LIMIT)

        # Paths
        repo_root_str = os.getenv("REPO_ROOT")
        repo_root = Path(repo_root_str) if repo_root_str else Path.cwd()

        docs_dir = Path(os.getenv("DOCS_DIR") or DEFAULT_DOCS_DIR)
        if not docs_dir.is_absolute():
            docs_dir = repo_root / docs_dir

        project_name = os.getenv("PROJECT_NAME") or detect_project_name(
            repo_root, debug=_env_flag("DEBUG")
        )

        return cls(
            notion_token=notion_token,
            notion_database_id=notion_database_id,
            repo_root=repo_root,
            docs_dir=docs_dir,
            project_name=project_name,
            concurrency=concurrency,
            rate_limit=rate_limit,
            title_category_prefix=_env_flag("TITLE_CATEGORY_PREFIX"),
            debug=_env_flag("DEBUG"),
        )

    def __post_init__(self):
        """Normalize path fields."""
        if isinstance(self.repo_root, str):
            self.repo_root = Path(self.repo_root)
        if isinstance(self.docs_dir, str):
            self.docs_dir = Path(self.docs_dir)

        # Notion accepts IDs with or without dashes
        self.notion_database_id = self.notion_database_id.replace("-", "")
