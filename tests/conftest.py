"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
import itertools
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Optional

import pytest

from notion_md_sync.config import Config
from notion_md_sync.notion_api import NotionAPI
from notion_md_sync.sync_engine import SyncEngine


def _key(object_id: str) -> str:
    return object_id.replace("-", "")


def _prop_text(prop: Optional[dict], kind: str) -> str:
    if not prop:
        return ""
    return "".join(
        item.get("plain_text") or item.get("text", {}).get("content", "")
        for item in prop.get(kind, [])
    )


class FakeNotionClient:
    """
    In-memory stand-in for notion_client.AsyncClient.

    Implements only the endpoints NotionAPI calls, with Notion's
    pagination and per-call child limit.
    """

    def __init__(self, page_size: int = 100, delay: float = 0):
        self.page_size = page_size
        self.delay = delay
        self.db_pages: dict[str, dict] = {}
        self.children: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, dict]] = []
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0
        self._ids = itertools.count(1)

        self.pages = SimpleNamespace(
            create=self._pages_create,
            update=self._pages_update,
            retrieve=self._pages_retrieve,
        )
        self.blocks = SimpleNamespace(
            children=SimpleNamespace(
                list=self._children_list,
                append=self._children_append,
            ),
            update=self._blocks_update,
        )
        self.databases = SimpleNamespace(query=self._databases_query)

    # -- helpers for tests -------------------------------------------------

    def new_id(self) -> str:
        return str(uuid.UUID(int=next(self._ids)))

    @staticmethod
    def now() -> str:
        # Notion reports edit times at minute precision
        stamp = datetime.now(timezone.utc).replace(second=0, microsecond=0)
        return stamp.isoformat().replace("+00:00", "Z")

    def add_page(
        self,
        title: str,
        blocks: list[dict],
        doc_uid: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> str:
        """Create a page the way a Notion user would."""
        properties = {"Name": {"title": [{"plain_text": title}], "type": "title"}}
        if doc_uid:
            properties["doc_uid"] = {"rich_text": [{"plain_text": doc_uid}], "type": "rich_text"}
        if project_name:
            properties["project_name"] = {
                "rich_text": [{"plain_text": project_name}],
                "type": "rich_text",
            }
        page_id = self.new_id()
        self.db_pages[_key(page_id)] = {
            "object": "page",
            "id": page_id,
            "properties": properties,
            "last_edited_time": self.now(),
            "url": f"https://www.notion.so/{_key(page_id)}",
        }
        self.children[_key(page_id)] = []
        self._store_children(page_id, blocks)
        return page_id

    def set_blocks(self, page_id: str, blocks: list[dict]) -> None:
        """Replace page content as if edited in Notion."""
        self.children[_key(page_id)] = []
        self._store_children(page_id, blocks)
        self.db_pages[_key(page_id)]["last_edited_time"] = self.now()

    def touch(self, page_id: str, when: datetime) -> None:
        self.db_pages[_key(page_id)]["last_edited_time"] = when.isoformat()

    def clear_property(self, page_id: str, name: str) -> None:
        self.db_pages[_key(page_id)]["properties"].pop(name, None)

    def page_blocks(self, page_id: str) -> list[dict]:
        return self.children[_key(page_id)]

    def property_text(self, page_id: str, name: str) -> str:
        prop = self.db_pages[_key(page_id)]["properties"].get(name)
        kind = "title" if name == "Name" else "rich_text"
        return _prop_text(prop, kind)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # -- endpoint plumbing -------------------------------------------------

    async def _enter(self, name: str, kwargs: dict) -> None:
        self.calls.append((name, kwargs))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    def _store_children(self, parent_id: str, blocks: list[dict]) -> None:
        for block in blocks:
            stored = copy.deepcopy(block)
            stored["id"] = self.new_id()
            stored["object"] = "block"
            self.children[_key(parent_id)].append(stored)

    def _paginate(self, items: list, page_size: int, start_cursor: Optional[str]) -> dict:
        start = int(start_cursor or 0)
        size = min(page_size, self.page_size)
        end = start + size
        has_more = end < len(items)
        return {
            "object": "list",
            "results": copy.deepcopy(items[start:end]),
            "has_more": has_more,
            "next_cursor": str(end) if has_more else None,
        }

    async def _pages_create(self, parent: dict, properties: dict) -> dict:
        await self._enter("pages.create", {"parent": parent, "properties": properties})
        page_id = self.new_id()
        page = {
            "object": "page",
            "id": page_id,
            "parent": parent,
            "properties": copy.deepcopy(properties),
            "last_edited_time": self.now(),
            "url": f"https://www.notion.so/{_key(page_id)}",
        }
        self.db_pages[_key(page_id)] = page
        self.children[_key(page_id)] = []
        return copy.deepcopy(page)

    async def _pages_update(self, page_id: str, properties: dict) -> dict:
        await self._enter("pages.update", {"page_id": page_id, "properties": properties})
        page = self.db_pages[_key(page_id)]
        page["properties"].update(copy.deepcopy(properties))
        page["last_edited_time"] = self.now()
        return copy.deepcopy(page)

    async def _pages_retrieve(self, page_id: str) -> dict:
        await self._enter("pages.retrieve", {"page_id": page_id})
        return copy.deepcopy(self.db_pages[_key(page_id)])

    async def _children_list(
        self,
        block_id: str,
        page_size: int = 100,
        start_cursor: Optional[str] = None,
    ) -> dict:
        await self._enter("blocks.children.list", {"block_id": block_id, "start_cursor": start_cursor})
        return self._paginate(self.children[_key(block_id)], page_size, start_cursor)

    async def _children_append(self, block_id: str, children: list[dict]) -> dict:
        await self._enter("blocks.children.append", {"block_id": block_id, "children": children})
        if len(children) > 100:
            raise ValueError("body.children.length should be ≤ 100")
        self._store_children(block_id, children)
        self.db_pages[_key(block_id)]["last_edited_time"] = self.now()
        return {"object": "list", "results": []}

    async def _blocks_update(self, block_id: str, archived: bool) -> dict:
        await self._enter("blocks.update", {"block_id": block_id, "archived": archived})
        for page_key, blocks in self.children.items():
            for block in blocks:
                if _key(block["id"]) == _key(block_id):
                    blocks.remove(block)
                    self.db_pages[page_key]["last_edited_time"] = self.now()
                    return {**block, "archived": archived}
        raise KeyError(block_id)

    async def _databases_query(
        self,
        database_id: str,
        filter: dict,
        page_size: int = 100,
        start_cursor: Optional[str] = None,
    ) -> dict:
        await self._enter("databases.query", {"filter": filter, "start_cursor": start_cursor})
        name = filter["property"]
        kind = "title" if "title" in filter else "rich_text"
        wanted = filter[kind]["equals"]
        matches = [
            page for page in self.db_pages.values()
            if _prop_text(page["properties"].get(name), kind) == wanted
        ]
        return self._paginate(matches, page_size, start_cursor)

    async def aclose(self) -> None:
        self.closed = True


def write_markdown(path: Path, body: str, **front_matter) -> Path:
    """Write a document file with optional front matter."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if front_matter:
        lines = ["---"]
        for key, value in front_matter.items():
            lines.append(f"{key}: {'' if value is None else value}")
        lines.append("---")
        text = "\n".join(lines) + "\n\n" + body
    else:
        text = body
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "docs"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path: Path, docs_dir: Path) -> Config:
    return Config(
        notion_token="secret_test",
        notion_database_id="0123456789abcdef0123456789abcdef",
        repo_root=tmp_path,
        docs_dir=docs_dir,
        project_name="handbook",
        concurrency=4,
        rate_limit=10_000,
    )


@pytest.fixture
def fake_notion() -> FakeNotionClient:
    return FakeNotionClient()


@pytest.fixture
def notion_api(config: Config, fake_notion: FakeNotionClient) -> NotionAPI:
    return NotionAPI(config, client=fake_notion)


@pytest.fixture
def engine(config: Config, notion_api: NotionAPI) -> SyncEngine:
    return SyncEngine(config, notion_api=notion_api)


@pytest.fixture
def later() -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=1)
