#!/usr/bin/env python3
"""
Markdown ⇄ Notion Sync CLI

Usage:
    notion-md-sync init              # Create the docs directory with an example
    notion-md-sync push              # Push local documents to Notion
    notion-md-sync pull              # Pull Notion pages into local documents
    notion-md-sync precommit-check   # Fail if Notion has edits not yet pulled
    notion-md-sync status            # Show local sync state
    notion-md-sync install-hook      # Run precommit-check from git's pre-commit
"""

import asyncio
import sys

import click
from rich.console import Console

from notion_md_sync import __version__
from notion_md_sync.config import Config, ConfigError
from notion_md_sync.git_handler import GitHandler
from notion_md_sync.sync_engine import SyncEngine

console = Console()

EXAMPLE_DOCUMENT = """---
title: Example Doc
notion_page_id:
doc_uid:
last_sync_at:
last_hash_fs:
last_hash_notion:
---

# Example

- Edit here or in Notion.
- Code blocks and bullets round-trip.

```python
print("ok")
```
"""


async def _run_engine(config: Config, operation: str):
    """Run one engine coroutine and close the API client afterwards."""
    async with SyncEngine(config) as engine:
        return await getattr(engine, operation)()


def _load_config(ctx, require_credentials: bool = True) -> Config:
    config = Config.from_env(require_credentials=require_credentials)
    if ctx.obj.get("debug"):
        config.debug = True
    return config


def _handle_errors(ctx, func):
    """Run func, mapping failures to exit codes the way every command does."""
    try:
        return func()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        console.print("\n[dim]Make sure you have created a .env file with your credentials.[/dim]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled.[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if ctx.obj.get("debug"):
            import traceback
            traceback.print_exc()
        sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx, debug: bool):
    """
    Markdown ⇄ Notion Sync

    Keeps a directory of Markdown files and a Notion database in sync.
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.pass_context
def init(ctx):
    """Create the docs directory with one example document."""

    def run():
        config = _load_config(ctx, require_credentials=False)
        config.docs_dir.mkdir(parents=True, exist_ok=True)
        example = config.docs_dir / "example.md"
        if example.exists():
            console.print(f"[yellow]{example} already exists, leaving it alone[/yellow]")
            return
        example.write_text(EXAMPLE_DOCUMENT, encoding="utf-8")
        console.print(f"[green]Initialized {example}[/green]")

    _handle_errors(ctx, run)


@cli.command()
@click.pass_context
def push(ctx):
    """Push local documents to Notion."""

    def run():
        config = _load_config(ctx)
        result = asyncio.run(_run_engine(config, "push_all"))
        if not result.success:
            sys.exit(1)

    _handle_errors(ctx, run)


@cli.command()
@click.pass_context
def pull(ctx):
    """Pull Notion pages of this project into local documents."""

    def run():
        config = _load_config(ctx)
        result = asyncio.run(_run_engine(config, "pull_all"))
        if not result.success:
            sys.exit(1)

    _handle_errors(ctx, run)


@cli.command("precommit-check")
@click.pass_context
def precommit_check(ctx):
    """Exit non-zero when Notion was edited after the last sync."""

    def run():
        config = _load_config(ctx)
        stale = asyncio.run(_run_engine(config, "precommit_check"))
        if stale:
            sys.exit(1)

    _handle_errors(ctx, run)


@cli.command()
@click.pass_context
def status(ctx):
    """Show the local sync state of every document."""

    def run():
        config = _load_config(ctx, require_credentials=False)
        SyncEngine(config).status()

    _handle_errors(ctx, run)


@cli.command("install-hook")
@click.option("--force", is_flag=True, help="Replace an existing pre-commit hook")
@click.pass_context
def install_hook(ctx, force: bool):
    """Install a git pre-commit hook running precommit-check."""

    def run():
        config = _load_config(ctx, require_credentials=False)
        hook = GitHandler(config.repo_root, debug=config.debug).install_pre_commit_hook(force=force)
        console.print(f"[green]Installed {hook}[/green]")

    _handle_errors(ctx, run)


@cli.command()
def version():
    """Show version information."""
    console.print(f"Markdown ⇄ Notion Sync v{__version__}")


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
