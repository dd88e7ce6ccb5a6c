"""
Main sync engine for Markdown ⇄ Notion synchronization.

Orchestrates:
- Push of local documents to Notion
- Pull of Notion pages into local documents
- Three-way hash comparison and conflict artifacts
- Pre-commit staleness check
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from rich.console import Console
from rich.table import Table

from .config import Config
from .document import (
    Document,
    find_documents,
    hash_body,
    new_doc_uid,
    parse_timestamp,
    read_document,
    unique_document_path,
    write_conflict,
    write_document,
)
from .markdown_converter import blocks_to_markdown, markdown_to_blocks
from .notion_api import (
    ARCHIVED_PROPERTY,
    DOC_UID_PROPERTY,
    PROJECT_PROPERTY,
    TITLE_PROPERTY,
    NotionAPI,
    NotionPage,
    checkbox_property,
    rich_text_property,
    title_property,
)

console = Console()


class ConflictError(Exception):
    """Both the local file and the Notion page changed since the last sync."""

    def __init__(self, path: Path, conflict_path: Path):
        super().__init__(f"Conflict: {conflict_path}")
        self.path = path
        self.conflict_path = conflict_path


class PullOutcome(Enum):
    """What a per-document pull did."""
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class SyncResult:
    """Result of a sync operation."""

    synced: list[Path] = field(default_factory=list)
    created: list[Path] = field(default_factory=list)
    # Page IDs stand in for paths in skipped and failed when a page has no file
    skipped: list = field(default_factory=list)
    conflicts: list[Path] = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check if sync was successful."""
        return not self.conflicts and not self.failed


def content_hash(body: str) -> str:
    """
    Hash of a Markdown body in its canonical rendering.

    Used for both sides: a local body and the Markdown rendered from a
    page's blocks hash alike whenever they produce the same blocks, so
    rendering artifacts such as empty paragraphs never look like edits.
    """
    return hash_body(blocks_to_markdown(markdown_to_blocks(body)))


class SyncEngine:
    """
    Main orchestrator for Markdown ⇄ Notion synchronization.

    Every document is handled independently inside one concurrency slot;
    a failing document is recorded in the result and never stops the
    others.
    """

    def __init__(self, config: Config, notion_api: Optional[NotionAPI] = None):
        """
        Initialize sync engine.

        Args:
            config: Configuration instance.
            notion_api: Optional API wrapper; built from config when omitted.
        """
        self.config = config
        self._notion_api = notion_api
        self._slots = asyncio.Semaphore(config.concurrency)

    @property
    def notion_api(self) -> NotionAPI:
        """API wrapper, created on first use so local-only commands need no token."""
        if self._notion_api is None:
            self._notion_api = NotionAPI(self.config)
        return self._notion_api

    async def close(self) -> None:
        """Release the API client."""
        if self._notion_api is not None:
            await self._notion_api.close()

    async def __aenter__(self) -> "SyncEngine":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # =====================================================================
    # Helpers
    # =====================================================================

    def _document_paths(self) -> list[Path]:
        return find_documents(self.config.docs_dir)

    async def _read(self, path: Path) -> Document:
        return await asyncio.to_thread(
            read_document, path, self.config.title_category_prefix
        )

    async def _write(self, doc: Document, exclusive: bool = False) -> None:
        await asyncio.to_thread(write_document, doc, exclusive)

    def _page_properties(self, doc: Document) -> dict:
        """Properties written on every push, title excluded."""
        return {
            DOC_UID_PROPERTY: rich_text_property(doc.doc_uid),
            ARCHIVED_PROPERTY: checkbox_property(doc.archived),
            PROJECT_PROPERTY: rich_text_property(self.config.project_name),
        }

    async def _run_each(
        self,
        paths: list[Path],
        handler: Callable[[Path], Awaitable[object]],
        result: SyncResult,
    ) -> list:
        """Run handler for every path under the concurrency limit."""

        async def guarded(path: Path):
            async with self._slots:
                try:
                    return await handler(path)
                except ConflictError as e:
                    console.print(f"[red]Conflict:[/red] {path} -> {e.conflict_path}")
                    result.conflicts.append(e.path)
                except Exception as e:
                    console.print(f"[red]Failed '{path}': {e}[/red]")
                    result.failed.append(path)
                return None

        return await asyncio.gather(*(guarded(p) for p in paths))

    # =====================================================================
    # Push
    # =====================================================================

    async def push_all(self) -> SyncResult:
        """
        Push every local document to Notion.

        Returns:
            SyncResult with details of the operation.
        """
        result = SyncResult()
        paths = self._document_paths()

        console.print(f"\n[bold blue]⬆ Pushing {len(paths)} documents to Notion[/bold blue]\n")

        async def push(path: Path) -> None:
            await self.push_one(path)
            result.synced.append(path)

        await self._run_each(paths, push, result)

        self._print_summary("Push", result)
        return result

    async def push_one(self, path: Path) -> Document:
        """
        Push a single document.

        Args:
            path: Local document path.

        Returns:
            The document as written back to disk.
        """
        doc = await self._read(path)
        children = markdown_to_blocks(doc.body)
        local_hash = content_hash(doc.body)
        properties = self._page_properties(doc)

        console.print(f"[cyan]Pushing:[/cyan] {doc.title}")

        if not doc.notion_page_id:
            found = await self.notion_api.query_by_title(doc.title)
            if found:
                doc.notion_page_id = found[0].id
                await self._update_page(doc, properties, children)
            else:
                doc.notion_page_id = await self.notion_api.create_page(
                    doc.title, properties, children
                )
        else:
            await self._update_page(doc, properties, children)

        doc.mark_synced(local_hash)
        await self._write(doc)
        return doc

    async def _update_page(self, doc: Document, properties: dict, children: list[dict]) -> None:
        await self.notion_api.update_properties(
            doc.notion_page_id,
            {TITLE_PROPERTY: title_property(doc.title), **properties},
        )
        await self.notion_api.replace_children(doc.notion_page_id, children)

    # =====================================================================
    # Pull
    # =====================================================================

    async def pull_one(self, path: Path) -> PullOutcome:
        """
        Pull Notion changes into one linked document.

        Raises:
            ConflictError: If both sides changed since the last sync.
        """
        doc = await self._read(path)
        return await self._pull_document(doc)

    async def _pull_document(self, doc: Document) -> PullOutcome:
        """
        Apply the three-way comparison to one document.

        remote == last known remote    -> nothing to do
        local  == last known remote    -> accept the Notion version
        otherwise                      -> conflict artifact, file untouched
        """
        if not doc.notion_page_id:
            return PullOutcome.SKIPPED

        blocks = await self.notion_api.list_children(doc.notion_page_id)
        remote_markdown = blocks_to_markdown(blocks)
        remote_hash = content_hash(remote_markdown)
        last_hash_notion = doc.last_hash_notion

        if remote_hash == last_hash_notion:
            console.print(f"[dim]Unchanged: {doc.path}[/dim]")
            return PullOutcome.UNCHANGED

        local_hash = content_hash(doc.body)
        if local_hash == last_hash_notion:
            console.print(f"[cyan]Pulling:[/cyan] {doc.path}")
            doc.body = remote_markdown
            doc.mark_synced(remote_hash)
            await self._write(doc)
            return PullOutcome.UPDATED

        conflict_path = await asyncio.to_thread(write_conflict, doc, remote_markdown)
        raise ConflictError(doc.path, conflict_path)

    async def pull_all(self) -> SyncResult:
        """
        Pull every Notion page tagged with this project.

        Pages with a local counterpart (same doc_uid) are pulled into it;
        pages without one become new local documents. Linked documents
        whose page was not returned by the project query are pulled too.

        Returns:
            SyncResult with details of the operation.
        """
        result = SyncResult()

        console.print(
            f"\n[bold blue]⬇ Pulling project '{self.config.project_name}' from Notion[/bold blue]\n"
        )

        pages = await self.notion_api.query_by_project(self.config.project_name)

        # gather keeps input order, so duplicate uids resolve the same way every run
        docs = await self._run_each(self._document_paths(), self._read, result)

        local_docs: dict[str, Document] = {}
        for doc in docs:
            if doc is None:
                continue
            if doc.doc_uid in local_docs:
                console.print(
                    f"[yellow]Warning: {doc.path} repeats the doc_uid of "
                    f"{local_docs[doc.doc_uid].path}; ignoring it[/yellow]"
                )
                continue
            local_docs[doc.doc_uid] = doc

        # An unreadable file may be the counterpart of any unmatched page
        can_create = not result.failed
        if not can_create:
            console.print(
                "[yellow]Some documents could not be read; "
                "no new files will be created this run[/yellow]"
            )

        pages_by_id = {page.id: page for page in pages}

        async def pull_page(page_id: str) -> None:
            await self._pull_page(pages_by_id[page_id], local_docs, result, can_create)

        await self._run_each(list(pages_by_id), pull_page, result)

        # Linked documents the project query did not cover
        seen_page_ids = {self._normalize_id(p.id) for p in pages}
        seen_uids = {p.doc_uid for p in pages}
        leftovers = {
            doc.path: doc
            for doc in local_docs.values()
            if doc.notion_page_id
            and doc.doc_uid not in seen_uids
            and self._normalize_id(doc.notion_page_id) not in seen_page_ids
        }

        async def pull_leftover(path: Path) -> None:
            outcome = await self._pull_document(leftovers[path])
            self._record_outcome(path, outcome, result)

        await self._run_each(sorted(leftovers), pull_leftover, result)

        self._print_summary("Pull", result)
        return result

    async def _pull_page(
        self,
        page: NotionPage,
        local_docs: dict[str, Document],
        result: SyncResult,
        can_create: bool = True,
    ) -> None:
        """Pull one project page into its local document or a new one."""
        if not page.doc_uid:
            page.doc_uid = new_doc_uid()
            console.print(f"[yellow]Assigning doc_uid to '{page.title}'[/yellow]")
            await self.notion_api.update_properties(
                page.id, {DOC_UID_PROPERTY: rich_text_property(page.doc_uid)}
            )

        doc = local_docs.get(page.doc_uid)
        if doc is None:
            if not can_create:
                console.print(f"[dim]Not creating a file for '{page.title}'[/dim]")
                result.skipped.append(page.id)
                return
            path = await self._materialize(page)
            result.created.append(path)
            return

        if not doc.notion_page_id:
            doc.notion_page_id = page.id

        outcome = await self._pull_document(doc)
        self._record_outcome(doc.path, outcome, result)

    async def _materialize(self, page: NotionPage) -> Path:
        """
        Create a new local document from a Notion page.

        Never overwrites an existing file: a taken name moves on to the
        next numeric suffix.
        """
        blocks = await self.notion_api.list_children(page.id)
        markdown = blocks_to_markdown(blocks)
        title = page.title or "Untitled"

        suffix = 0
        while True:
            path = unique_document_path(self.config.docs_dir, title, start=suffix)
            doc = Document(
                path=path,
                title=title,
                doc_uid=page.doc_uid,
                body=markdown,
                notion_page_id=page.id,
                archived=page.archived,
            )
            doc.mark_synced(content_hash(markdown))
            try:
                await self._write(doc, exclusive=True)
            except FileExistsError:
                suffix += 1
                continue

            console.print(f"[green]Created:[/green] {path}")
            return path

    @staticmethod
    def _normalize_id(page_id: str) -> str:
        return page_id.replace("-", "")

    @staticmethod
    def _record_outcome(path: Path, outcome: PullOutcome, result: SyncResult) -> None:
        if outcome is PullOutcome.UPDATED:
            result.synced.append(path)
        else:
            result.skipped.append(path)

    # =====================================================================
    # Pre-commit check
    # =====================================================================

    async def precommit_check(self) -> list[Path]:
        """
        Find linked documents edited in Notion after their last sync.

        Returns:
            Paths of stale documents; empty when everything is current.
        """
        stale: list[Path] = []
        result = SyncResult()

        async def check(path: Path) -> None:
            doc = await self._read(path)
            if not doc.notion_page_id:
                return
            edited = await self.notion_api.get_last_edited(doc.notion_page_id)
            last_sync = parse_timestamp(doc.last_sync_at)
            if last_sync is None or (edited is not None and edited > last_sync):
                stale.append(path)

        await self._run_each(self._document_paths(), check, result)

        # A document we could not check cannot be declared current
        stale.extend(result.failed)
        stale.sort()

        if stale:
            console.print("[red]Pull required before commit:[/red]")
            for path in stale:
                console.print(f"  {path}")
        else:
            console.print("[green]All documents are up to date with Notion[/green]")

        return stale

    # =====================================================================
    # Reporting
    # =====================================================================

    def status(self) -> list[dict]:
        """Print and return the local sync state of every document."""
        rows = []
        for path in self._document_paths():
            try:
                doc = read_document(path, self.config.title_category_prefix)
            except Exception as e:
                console.print(f"[red]Unreadable '{path}': {e}[/red]")
                continue

            last_sync = parse_timestamp(doc.last_sync_at)
            rows.append({
                "path": path,
                "title": doc.title,
                "linked": doc.is_linked,
                "last_sync_at": last_sync,
                "in_sync": bool(doc.last_hash_fs)
                and doc.last_hash_fs == doc.last_hash_notion
                and content_hash(doc.body) == doc.last_hash_fs,
            })

        if not rows:
            console.print("[yellow]No documents found.[/yellow]")
            console.print(f"Run 'notion-md-sync init' to create {self.config.docs_dir}.")
            return rows

        table = Table(title="Documents")
        table.add_column("Document", style="cyan")
        table.add_column("Title", style="white")
        table.add_column("Linked", style="green")
        table.add_column("Last Synced", style="blue")
        table.add_column("Local Edits", style="yellow")

        for row in rows:
            synced_at: Optional[datetime] = row["last_sync_at"]
            table.add_row(
                str(row["path"]),
                row["title"],
                "✓" if row["linked"] else "✗",
                synced_at.strftime("%Y-%m-%d %H:%M") if synced_at else "never",
                "no" if row["in_sync"] else "yes",
            )

        console.print(table)
        return rows

    def _print_summary(self, operation: str, result: SyncResult) -> None:
        """Print sync summary."""
        console.print("\n" + "=" * 50)
        console.print(f"[bold]{operation} Summary[/bold]")
        console.print("=" * 50)

        table = Table(show_header=False, box=None)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Documents synced", str(len(result.synced)))
        table.add_row("Documents created", str(len(result.created)))
        table.add_row("Documents unchanged", str(len(result.skipped)))
        table.add_row("Conflicts", str(len(result.conflicts)))
        table.add_row("Failed", str(len(result.failed)))
        table.add_row("API requests", str(self.notion_api.request_count))

        console.print(table)

        if result.conflicts:
            console.print("\n[red]Resolve the .conflict files, then pull again:[/red]")
            for path in result.conflicts:
                console.print(f"  {path}")

        if result.failed:
            console.print(f"\n[red]Failed:[/red] {', '.join(str(p) for p in result.failed)}")

        console.print("")
