from pathlib import Path

import pytest

from notion_md_sync.config import Config, ConfigError

ENV_VARS = [
    "NOTION_TOKEN",
    "NOTION_DATABASE_ID",
    "DOCS_DIR",
    "CONCURRENCY",
    "PROJECT_NAME",
    "REPO_ROOT",
    "NOTION_RATE_LIMIT",
    "TITLE_CATEGORY_PREFIX",
    "DEBUG",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty environment rooted in a directory without a .env file."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "notion_md_sync.config.detect_project_name",
        lambda repo_root, debug=False: "detected",
    )
    return monkeypatch


def test_defaults(clean_env, tmp_path):
    clean_env.setenv("NOTION_TOKEN", "secret_x")
    clean_env.setenv("NOTION_DATABASE_ID", "abcd-ef01")

    config = Config.from_env()

    assert config.notion_token == "secret_x"
    assert config.notion_database_id == "abcdef01"
    assert config.repo_root == tmp_path
    assert config.docs_dir == tmp_path / "docs"
    assert config.project_name == "detected"
    assert config.concurrency == 6
    assert config.rate_limit == 3
    assert config.title_category_prefix is False
    assert config.debug is False


def test_overrides(clean_env, tmp_path):
    clean_env.setenv("NOTION_TOKEN", "secret_x")
    clean_env.setenv("NOTION_DATABASE_ID", "db")
    clean_env.setenv("REPO_ROOT", str(tmp_path / "repo"))
    clean_env.setenv("DOCS_DIR", "notes")
    clean_env.setenv("CONCURRENCY", "2")
    clean_env.setenv("NOTION_RATE_LIMIT", "5")
    clean_env.setenv("PROJECT_NAME", "handbook")
    clean_env.setenv("TITLE_CATEGORY_PREFIX", "true")
    clean_env.setenv("DEBUG", "TRUE")

    config = Config.from_env()

    assert config.docs_dir == tmp_path / "repo" / "notes"
    assert config.concurrency == 2
    assert config.rate_limit == 5
    assert config.project_name == "handbook"
    assert config.title_category_prefix is True
    assert config.debug is True


def test_absolute_docs_dir_is_kept(clean_env, tmp_path):
    clean_env.setenv("DOCS_DIR", str(tmp_path / "elsewhere"))

    config = Config.from_env(require_credentials=False)

    assert config.docs_dir == tmp_path / "elsewhere"


def test_env_file_is_loaded(clean_env, tmp_path):
    env_file = tmp_path / "custom.env"
    env_file.write_text("NOTION_TOKEN=from_file\nNOTION_DATABASE_ID=db\n", encoding="utf-8")

    config = Config.from_env(env_file=env_file)

    assert config.notion_token == "from_file"


@pytest.mark.parametrize("missing", ["NOTION_TOKEN", "NOTION_DATABASE_ID"])
def test_missing_credentials_raise(clean_env, missing):
    clean_env.setenv("NOTION_TOKEN", "secret_x")
    clean_env.setenv("NOTION_DATABASE_ID", "db")
    clean_env.delenv(missing)

    with pytest.raises(ConfigError, match=missing):
        Config.from_env()


def test_local_commands_need_no_credentials(clean_env):
    config = Config.from_env(require_credentials=False)

    assert config.notion_token == ""


@pytest.mark.parametrize("value", ["zero", "0", "-3"])
def test_invalid_concurrency_raises(clean_env, value):
    clean_env.setenv("CONCURRENCY", value)

    with pytest.raises(ConfigError, match="CONCURRENCY"):
        Config.from_env(require_credentials=False)


def test_string_paths_are_normalized():
    config = Config(
        notion_token="t",
        notion_database_id="a-b",
        repo_root="/tmp/repo",
        docs_dir="/tmp/repo/docs",
        project_name="p",
    )

    assert config.repo_root == Path("/tmp/repo")
    assert config.docs_dir == Path("/tmp/repo/docs")
    assert config.notion_database_id == "ab"
