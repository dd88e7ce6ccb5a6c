"""
Notion API wrapper for the sync system.

Provides a clean async interface to Notion's API with:
- Rate limiting compliance
- Cursor pagination
- Chunked child appends
- Error handling
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from notion_client import AsyncClient
from notion_client.errors import APIResponseError
from ratelimit import RateLimitException, limits
from rich.console import Console

from .config import Config
from .document import parse_timestamp

console = Console()

RATE_LIMIT_PERIOD = 1  # second

# Notion caps children per append call and results per page
MAX_CHILDREN_PER_CALL = 100
PAGE_SIZE = 100

TITLE_PROPERTY = "Name"
DOC_UID_PROPERTY = "doc_uid"
ARCHIVED_PROPERTY = "archived"
PROJECT_PROPERTY = "project_name"


def title_property(title: str) -> dict:
    """Notion title property value."""
    return {"title": [{"type": "text", "text": {"content": title}}]}


def rich_text_property(text: str) -> dict:
    """Notion rich text property value."""
    return {"rich_text": [{"type": "text", "text": {"content": text}}]}


def checkbox_property(checked: bool) -> dict:
    """Notion checkbox property value."""
    return {"checkbox": bool(checked)}


def _property_text(prop: Optional[dict], kind: str) -> str:
    if not prop:
        return ""
    parts = []
    for item in prop.get(kind) or []:
        if item.get("plain_text") is not None:
            parts.append(item["plain_text"])
        else:
            parts.append((item.get("text") or {}).get("content", ""))
    return "".join(parts)


@dataclass
class NotionPage:
    """Represents a Notion database page with the properties we sync."""

    id: str
    title: str
    last_edited_time: Optional[datetime]
    url: str = ""
    doc_uid: Optional[str] = None
    archived: bool = False
    project_name: Optional[str] = None

    @classmethod
    def from_api_response(cls, page: dict) -> "NotionPage":
        """Create NotionPage from API response."""
        properties = page.get("properties", {})

        title_prop = next(
            (p for p in properties.values() if p.get("type") == "title"),
            properties.get(TITLE_PROPERTY),
        )

        archived_prop = properties.get(ARCHIVED_PROPERTY) or {}

        return cls(
            id=page["id"],
            title=_property_text(title_prop, "title"),
            last_edited_time=parse_timestamp(page.get("last_edited_time")),
            url=page.get("url", ""),
            doc_uid=_property_text(properties.get(DOC_UID_PROPERTY), "rich_text") or None,
            archived=bool(archived_prop.get("checkbox", False)),
            project_name=_property_text(properties.get(PROJECT_PROPERTY), "rich_text") or None,
        )


class NotionAPI:
    """
    Async wrapper around the Notion API with rate limiting and utilities.

    Handles:
    - Authentication
    - Rate limiting (config.rate_limit requests per second)
    - Pagination until exhausted
    - Chunked appends of at most 100 children
    """

    def __init__(self, config: Config, client: Optional[Any] = None):
        """
        Initialize the Notion API client.

        Args:
            config: Configuration instance with Notion token.
            client: Optional pre-built client exposing the AsyncClient
                    endpoints; created from the token when omitted.
        """
        self.config = config
        self.client = client or AsyncClient(auth=config.notion_token)
        self._request_count = 0

        @limits(calls=config.rate_limit, period=RATE_LIMIT_PERIOD)
        def take_slot() -> None:
            """Consume one request from the current rate window."""

        self._take_slot = take_slot

    async def _rate_limited_call(self, func, **kwargs) -> Any:
        """Execute a rate-limited API call, waiting for a free slot."""
        while True:
            try:
                self._take_slot()
                break
            except RateLimitException as e:
                await asyncio.sleep(e.period_remaining)

        self._request_count += 1
        try:
            return await func(**kwargs)
        except APIResponseError as e:
            console.print(f"[red]API Error: {e}[/red]")
            raise

    async def create_page(
        self,
        title: str,
        properties: dict,
        children: list[dict],
    ) -> str:
        """
        Create a page in the configured database.

        Args:
            title: Page title.
            properties: Additional property values.
            children: Blocks to append after creation.

        Returns:
            ID of the new page.
        """
        response = await self._rate_limited_call(
            self.client.pages.create,
            parent={"database_id": self._format_page_id(self.config.notion_database_id)},
            properties={TITLE_PROPERTY: title_property(title), **properties},
        )
        page_id = response["id"]

        await self.append_children(page_id, children)

        return page_id

    async def update_properties(self, page_id: str, properties: dict) -> None:
        """Overwrite the named properties of a page."""
        await self._rate_limited_call(
            self.client.pages.update,
            page_id=self._format_page_id(page_id),
            properties=properties,
        )

    async def list_children(self, block_id: str) -> list[dict]:
        """
        Get all child blocks of a page or block.

        Args:
            block_id: The page or block ID.

        Returns:
            Every child block in order, across all result pages.
        """
        blocks = []
        start_cursor = None
        formatted_id = self._format_page_id(block_id)

        while True:
            kwargs = {"block_id": formatted_id, "page_size": PAGE_SIZE}
            if start_cursor:
                kwargs["start_cursor"] = start_cursor

            response = await self._rate_limited_call(
                self.client.blocks.children.list, **kwargs
            )
            blocks.extend(response.get("results", []))

            start_cursor = response.get("next_cursor")
            if not response.get("has_more") or not start_cursor:
                break

        return blocks

    async def append_children(self, block_id: str, children: list[dict]) -> None:
        """Append children in order, at most 100 per call."""
        formatted_id = self._format_page_id(block_id)

        for i in range(0, len(children), MAX_CHILDREN_PER_CALL):
            await self._rate_limited_call(
                self.client.blocks.children.append,
                block_id=formatted_id,
                children=children[i:i + MAX_CHILDREN_PER_CALL],
            )

    async def replace_children(self, page_id: str, children: list[dict]) -> None:
        """
        Replace all content of a page.

        The new blocks are appended before the old ones are archived, so
        a failure part way leaves extra blocks behind rather than an
        empty page.
        """
        existing = await self.list_children(page_id)

        await self.append_children(page_id, children)

        for block in existing:
            await self._rate_limited_call(
                self.client.blocks.update,
                block_id=block["id"],
                archived=True,
            )

    async def query_by_title(self, title: str) -> list[NotionPage]:
        """Find pages whose title equals the given title exactly."""
        response = await self._rate_limited_call(
            self.client.databases.query,
            database_id=self._format_page_id(self.config.notion_database_id),
            filter={"property": TITLE_PROPERTY, "title": {"equals": title}},
            page_size=5,
        )
        return [NotionPage.from_api_response(p) for p in response.get("results", [])]

    async def query_by_project(self, project_name: str) -> list[NotionPage]:
        """
        Get every page tagged with a project name.

        Args:
            project_name: Value of the project_name property.

        Returns:
            NotionPage objects across all result pages.
        """
        pages = []
        start_cursor = None

        while True:
            kwargs = {
                "database_id": self._format_page_id(self.config.notion_database_id),
                "filter": {
                    "property": PROJECT_PROPERTY,
                    "rich_text": {"equals": project_name},
                },
                "page_size": PAGE_SIZE,
            }
            if start_cursor:
                kwargs["start_cursor"] = start_cursor

            response = await self._rate_limited_call(
                self.client.databases.query, **kwargs
            )
            pages.extend(
                NotionPage.from_api_response(p) for p in response.get("results", [])
            )

            start_cursor = response.get("next_cursor")
            if not response.get("has_more") or not start_cursor:
                break

        return pages

    async def get_last_edited(self, page_id: str) -> Optional[datetime]:
        """Last edit time of a page."""
        response = await self._rate_limited_call(
            self.client.pages.retrieve,
            page_id=self._format_page_id(page_id),
        )
        return parse_timestamp(response.get("last_edited_time"))

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    def _format_page_id(self, page_id: str) -> str:
        """
        Format a page ID for API calls.

        Notion API sometimes requires dashes, sometimes doesn't.
        This ensures consistent formatting.
        """
        # Remove existing dashes
        clean_id = page_id.replace("-", "")

        # Add dashes in standard UUID format
        if len(clean_id) == 32:
            return f"{clean_id[:8]}-{clean_id[8:12]}-{clean_id[12:16]}-{clean_id[16:20]}-{clean_id[20:]}"

        return page_id

    @property
    def request_count(self) -> int:
        """Number of API requests made."""
        return self._request_count
