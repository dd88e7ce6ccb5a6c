"""
Markdown ⇄ Notion blocks converter.

Converts a constrained Markdown dialect to Notion's block structure and
back. The supported subset round-trips:
- Headings (levels 1-3)
- Paragraphs
- Bulleted list items
- Fenced code blocks (with language)
- Inline bold, italic, code and links

Anything else (ordered lists, tables, nested lists, quotes, images) is
flattened to paragraphs and is not guaranteed to round-trip.

Code longer than MAX_TEXT_LENGTH is stored as consecutive code blocks and
joined again on the way back. Notion blocks have nowhere to mark a
continuation, so two separate fences of the same language also join
when the first one's length is an exact multiple of MAX_TEXT_LENGTH.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

# Notion rejects rich text content longer than this
MAX_TEXT_LENGTH = 2000

DEFAULT_LANGUAGE = "plain text"

FENCE = "```"

# Fence info strings people actually type -> Notion language names
FENCE_TO_NOTION_LANGUAGE = {
    "": DEFAULT_LANGUAGE,
    "text": DEFAULT_LANGUAGE,
    "py": "python",
    "js": "javascript",
    "ts": "typescript",
    "sh": "shell",
    "yml": "yaml",
    "cpp": "c++",
    "csharp": "c#",
}

# Notion language names -> fence info strings
NOTION_TO_FENCE_LANGUAGE = {
    DEFAULT_LANGUAGE: "",
    "c++": "cpp",
    "c#": "csharp",
    "shell": "bash",
}

LINE_MARKERS = (
    ("### ", "heading_3"),
    ("## ", "heading_2"),
    ("# ", "heading_1"),
    ("- ", "bulleted_list_item"),
)

# Inline patterns in priority order; ties on start offset go to the earlier one
INLINE_PATTERNS = (
    ("bold", re.compile(r"\*\*(.+?)\*\*")),
    ("italic", re.compile(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)")),
    ("code", re.compile(r"`([^`]+)`")),
    ("link", re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")),
)


@dataclass
class InlineSpan:
    """A recognized inline span inside one line of text."""

    start: int
    end: int
    kind: str
    text: str
    url: Optional[str] = None


# =========================================================================
# Rich text helpers
# =========================================================================


def text_run(
    content: str,
    bold: bool = False,
    italic: bool = False,
    code: bool = False,
    url: Optional[str] = None,
) -> dict:
    """Build one Notion rich text run."""
    return {
        "type": "text",
        "text": {
            "content": content,
            "link": {"url": url} if url else None,
        },
        "annotations": {
            "bold": bold,
            "italic": italic,
            "code": code,
        },
    }


def run_text(run: dict) -> str:
    """Plain text of a rich text run, from an API response or a payload."""
    if run.get("plain_text") is not None:
        return run["plain_text"]
    return (run.get("text") or {}).get("content", "")


def run_url(run: dict) -> Optional[str]:
    """Link target of a rich text run, if any."""
    if run.get("href"):
        return run["href"]
    link = (run.get("text") or {}).get("link")
    if link:
        return link.get("url")
    return None


def find_inline_spans(text: str) -> list[InlineSpan]:
    """
    Find the inline spans that survive overlap resolution.

    All candidates of every kind are collected first, sorted by start
    offset (stable, so pattern priority breaks ties), then accepted
    greedily when they do not overlap an already accepted span.
    """
    candidates = []
    for kind, pattern in INLINE_PATTERNS:
        for match in pattern.finditer(text):
            url = match.group(2) if kind == "link" else None
            candidates.append(
                InlineSpan(match.start(), match.end(), kind, match.group(1), url)
            )

    candidates.sort(key=lambda span: span.start)

    accepted = []
    cursor = 0
    for span in candidates:
        if span.start < cursor:
            continue
        accepted.append(span)
        cursor = span.end

    return accepted


def parse_inline(text: str) -> list[dict]:
    """
    Convert one line of Markdown text to rich text runs.

    Args:
        text: Line content without its block marker.

    Returns:
        Ordered list of rich text runs. Empty text gives no runs.
    """
    if not text:
        return []

    runs = []
    position = 0

    for span in find_inline_spans(text):
        if span.start > position:
            runs.append(text_run(text[position:span.start]))

        if span.kind == "bold":
            runs.append(text_run(span.text, bold=True))
        elif span.kind == "italic":
            runs.append(text_run(span.text, italic=True))
        elif span.kind == "code":
            runs.append(text_run(span.text, code=True))
        else:
            runs.append(text_run(span.text, url=span.url))

        position = span.end

    if position < len(text):
        runs.append(text_run(text[position:]))

    return runs


def render_inline(rich_text: list[dict]) -> str:
    """Convert Notion rich text runs back to one line of Markdown."""
    parts = []
    for run in rich_text or []:
        content = run_text(run)
        annotations = run.get("annotations") or {}
        url = run_url(run)

        if annotations.get("code"):
            content = f"`{content}`"
        if annotations.get("bold"):
            content = f"**{content}**"
        if annotations.get("italic"):
            content = f"*{content}*"
        if url:
            content = f"[{content}]({url})"

        parts.append(content)

    return "".join(parts)


# =========================================================================
# Block helpers
# =========================================================================


def text_block(block_type: str, text: str) -> dict:
    """Build a text-bearing block with inline styles parsed."""
    return {
        "type": block_type,
        block_type: {"rich_text": parse_inline(text)},
    }


def code_blocks(language: str, content: str) -> list[dict]:
    """
    Build code blocks for content, chunked to Notion's text limit.

    Concatenating the chunks in order gives back the original content.
    """
    chunks = [
        content[i:i + MAX_TEXT_LENGTH]
        for i in range(0, len(content), MAX_TEXT_LENGTH)
    ] or [""]

    return [
        {
            "type": "code",
            "code": {
                "language": language,
                "rich_text": [text_run(chunk)] if chunk else [],
            },
        }
        for chunk in chunks
    ]


def notion_language(info: str) -> str:
    """Map a fence info string to a Notion code language."""
    info = info.strip().lower()
    return FENCE_TO_NOTION_LANGUAGE.get(info, info)


def fence_language(language: str) -> str:
    """Map a Notion code language to a fence info string."""
    language = (language or "").lower()
    return NOTION_TO_FENCE_LANGUAGE.get(language, language)


class MarkdownConverter:
    """
    Converts between Markdown text and Notion blocks.

    Stateless; one instance can be shared by every document.
    """

    def __init__(self):
        """Initialize converter."""
        # Block type handlers
        self._handlers: dict[str, Callable[[dict], Optional[str]]] = {
            "paragraph": self._convert_paragraph,
            "heading_1": self._convert_heading_1,
            "heading_2": self._convert_heading_2,
            "heading_3": self._convert_heading_3,
            "bulleted_list_item": self._convert_bulleted_list_item,
            "code": self._convert_code,
        }

    # =====================================================================
    # Markdown -> blocks
    # =====================================================================

    def to_blocks(self, markdown: str) -> list[dict]:
        """
        Convert Markdown text to a list of Notion blocks.

        Args:
            markdown: Document body without front matter.

        Returns:
            Blocks in rendering order, ready to append to a page.
        """
        lines = markdown.split("\n")
        blocks = []
        i = 0

        while i < len(lines):
            line = lines[i]

            if line.startswith(FENCE):
                language = notion_language(line[len(FENCE):])
                buffer = []
                i += 1
                while i < len(lines) and not lines[i].startswith(FENCE):
                    buffer.append(lines[i])
                    i += 1
                blocks.extend(code_blocks(language, "\n".join(buffer)))
                # Skip the closing fence
                i += 1
                continue

            blocks.extend(self._line_to_blocks(line))
            i += 1

        return blocks

    def _line_to_blocks(self, line: str) -> list[dict]:
        for marker, block_type in LINE_MARKERS:
            if line.startswith(marker):
                return [text_block(block_type, line[len(marker):].strip())]

        if line.strip():
            return [text_block("paragraph", line.strip())]

        return []

    # =====================================================================
    # Blocks -> Markdown
    # =====================================================================

    def to_markdown(self, blocks: list[dict]) -> str:
        """
        Convert Notion blocks to Markdown text.

        Args:
            blocks: Blocks from an API response or from to_blocks().

        Returns:
            Markdown ending with exactly one newline.
        """
        lines = []
        for block in self._merge_code_chunks(blocks):
            markdown = self._convert_block(block)
            if markdown is not None:
                lines.append(markdown)

        return "\n".join(lines).strip() + "\n"

    def _convert_block(self, block: dict) -> Optional[str]:
        """Convert a single block to markdown."""
        handler = self._handlers.get(block.get("type"))
        if handler:
            return handler(block)
        return self._convert_unsupported(block)

    def _merge_code_chunks(self, blocks: list[dict]) -> list[dict]:
        """Join code blocks that were split at the text limit."""
        merged = []
        for block in blocks:
            previous = merged[-1] if merged else None
            if (
                previous is not None
                and block.get("type") == "code"
                and previous.get("type") == "code"
                and self._code_language(previous) == self._code_language(block)
                and len(self._code_text(previous)) % MAX_TEXT_LENGTH == 0
                and self._code_text(previous)
            ):
                content = self._code_text(previous) + self._code_text(block)
                merged[-1] = {
                    "type": "code",
                    "code": {
                        "language": self._code_language(previous),
                        "rich_text": [text_run(content)],
                    },
                }
                continue
            merged.append(block)
        return merged

    @staticmethod
    def _code_text(block: dict) -> str:
        return "".join(run_text(r) for r in block["code"].get("rich_text", []))

    @staticmethod
    def _code_language(block: dict) -> str:
        return block["code"].get("language") or DEFAULT_LANGUAGE

    @staticmethod
    def _rich_text(block: dict) -> list[dict]:
        return (block.get(block["type"]) or {}).get("rich_text", [])

    # =========================================================================
    # Block type handlers
    # =========================================================================

    def _convert_paragraph(self, block: dict) -> str:
        return render_inline(self._rich_text(block))

    def _convert_heading_1(self, block: dict) -> str:
        return f"# {render_inline(self._rich_text(block))}"

    def _convert_heading_2(self, block: dict) -> str:
        return f"## {render_inline(self._rich_text(block))}"

    def _convert_heading_3(self, block: dict) -> str:
        return f"### {render_inline(self._rich_text(block))}"

    def _convert_bulleted_list_item(self, block: dict) -> str:
        return f"- {render_inline(self._rich_text(block))}"

    def _convert_code(self, block: dict) -> str:
        language = fence_language(self._code_language(block))
        return f"{FENCE}{language}\n{self._code_text(block)}\n{FENCE}"

    def _convert_unsupported(self, block: dict) -> Optional[str]:
        """Flatten any other text-bearing block to a paragraph."""
        block_type = block.get("type")
        if not block_type:
            return None
        content = block.get(block_type)
        if not isinstance(content, dict) or "rich_text" not in content:
            return None
        return render_inline(content["rich_text"])


_converter = MarkdownConverter()


def markdown_to_blocks(markdown: str) -> list[dict]:
    """Convert Markdown text to Notion blocks."""
    return _converter.to_blocks(markdown)


def blocks_to_markdown(blocks: list[dict]) -> str:
    """Convert Notion blocks to Markdown text."""
    return _converter.to_markdown(blocks)
