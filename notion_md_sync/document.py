"""
Local Markdown documents with YAML front matter.

A document file is a front matter block holding the sync bookkeeping
followed by the Markdown body:

    ---
    title: Example Doc
    notion_page_id: 0f3c...
    doc_uid: 5b0e...
    last_sync_at: '2024-05-01T10:00:00+00:00'
    last_hash_fs: 9a1f...
    last_hash_notion: 9a1f...
    archived: false
    ---

    # Example
"""

import hashlib
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import frontmatter
import yaml

FRONT_MATTER_KEYS = (
    "title",
    "notion_page_id",
    "doc_uid",
    "last_sync_at",
    "last_hash_fs",
    "last_hash_notion",
    "archived",
)

CONFLICT_SUFFIX = ".conflict"


class DocumentError(Exception):
    """Raised when a document's front matter cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path


@dataclass
class Document:
    """A local Markdown document and its sync bookkeeping."""

    path: Path
    title: str
    doc_uid: str
    body: str
    notion_page_id: Optional[str] = None
    last_sync_at: Optional[str] = None
    last_hash_fs: Optional[str] = None
    last_hash_notion: Optional[str] = None
    archived: bool = False

    # Front matter keys this tool does not own, kept as-is
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_linked(self) -> bool:
        """Whether the document has a Notion page."""
        return bool(self.notion_page_id)

    @property
    def conflict_path(self) -> Path:
        """Sibling file that receives both versions on conflict."""
        return self.path.with_name(self.path.name + CONFLICT_SUFFIX)

    def mark_synced(self, content_hash: str) -> None:
        """Record that both sides now hold content with this hash."""
        self.last_hash_fs = content_hash
        self.last_hash_notion = content_hash
        self.last_sync_at = datetime.now(timezone.utc).isoformat()

    def front_matter(self) -> dict[str, Any]:
        """Front matter in a stable key order."""
        metadata = {
            "title": self.title,
            "notion_page_id": self.notion_page_id,
            "doc_uid": self.doc_uid,
            "last_sync_at": self.last_sync_at,
            "last_hash_fs": self.last_hash_fs,
            "last_hash_notion": self.last_hash_notion,
            "archived": self.archived,
        }
        metadata.update(self.extra)
        return metadata


def new_doc_uid() -> str:
    """Generate a fresh stable document identifier."""
    return str(uuid.uuid4())


def hash_body(text: str) -> str:
    """SHA-256 hex digest of text encoded as UTF-8."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a front matter or API timestamp.

    YAML turns unquoted ISO timestamps into datetime objects, while
    Notion returns strings ending in "Z"; both are accepted. Naive
    values are taken as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def format_title_with_category(title: str, filename: str) -> str:
    """
    Prefix a title with the category encoded in the filename.

    The category is the part of the filename before the first hyphen.

    Examples:
        ("Intro", "api_health-intro") -> "Api Health: Intro"
        ("api_health-getting-started", "api_health-getting-started")
            -> "Api Health: Getting Started"
        ("Intro", "intro") -> "Intro"
    """
    if "-" not in filename:
        return title

    category, remainder = filename.split("-", 1)
    category_formatted = " ".join(
        word.capitalize() for word in category.split("_") if word
    )

    # Title fell back to the filename, so prettify the remainder too
    if title == filename:
        remainder_formatted = " ".join(
            word.capitalize() for word in re.split(r"[-_]", remainder) if word
        )
        return f"{category_formatted}: {remainder_formatted}"

    return f"{category_formatted}: {title}"


def guess_title(body: str, filename: str, category_prefix: bool = False) -> str:
    """Title from the first level-1 heading, else the filename."""
    title = filename
    for line in body.split("\n"):
        if line.startswith("# "):
            title = line[2:].strip() or filename
            break

    if category_prefix:
        return format_title_with_category(title, filename)
    return title


def read_document(path: Path, category_prefix: bool = False) -> Document:
    """
    Read a document, filling in a uid and title when missing.

    Args:
        path: Markdown file to read.
        category_prefix: Prefix guessed titles with the filename category.

    Returns:
        Document built from the file.

    Raises:
        OSError: If the file cannot be read.
        DocumentError: If the front matter is malformed.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")

    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise DocumentError(path, f"malformed front matter: {e}") from e

    metadata = dict(post.metadata)
    body = post.content

    doc_uid = _optional_str(metadata.pop("doc_uid", None)) or new_doc_uid()
    title = _optional_str(metadata.pop("title", None)) or guess_title(
        body, path.stem, category_prefix
    )

    return Document(
        path=path,
        title=title,
        doc_uid=doc_uid,
        body=body,
        notion_page_id=_optional_str(metadata.pop("notion_page_id", None)),
        last_sync_at=_optional_str(metadata.pop("last_sync_at", None)),
        last_hash_fs=_optional_str(metadata.pop("last_hash_fs", None)),
        last_hash_notion=_optional_str(metadata.pop("last_hash_notion", None)),
        archived=bool(metadata.pop("archived", False)),
        extra=metadata,
    )


def write_document(doc: Document, exclusive: bool = False) -> None:
    """
    Write front matter and body back to the document's path.

    Args:
        doc: Document to serialize.
        exclusive: Fail with FileExistsError instead of overwriting.
    """
    post = frontmatter.Post(doc.body)
    post.metadata.update(doc.front_matter())
    content = frontmatter.dumps(post, sort_keys=False)
    if not content.endswith("\n"):
        content += "\n"

    doc.path.parent.mkdir(parents=True, exist_ok=True)
    with open(doc.path, "x" if exclusive else "w", encoding="utf-8") as f:
        f.write(content)


def write_conflict(doc: Document, remote_markdown: str) -> Path:
    """Write both divergent bodies next to the document."""
    payload = "\n".join([
        "<<<<<<< FILE SYSTEM",
        doc.body,
        "=======",
        remote_markdown,
        ">>>>>>> NOTION",
    ])
    conflict_path = doc.conflict_path
    with open(conflict_path, "w", encoding="utf-8") as f:
        f.write(payload)
    return conflict_path


def find_documents(root: Path) -> list[Path]:
    """All Markdown documents under root, sorted."""
    root = Path(root)
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*.md") if p.is_file())


def slugify(title: str) -> str:
    """
    Generate a clean, filesystem-safe file stem from a title.

    Examples:
        "Linux" -> "linux"
        "SSH – Secure Shell" -> "ssh-secure-shell"
        "Git & GitHub" -> "git-github"
    """
    slug = re.sub(r"[–—]", "-", title)  # En/em dash to hyphen
    slug = re.sub(r"[&]", "-", slug)  # Ampersand to hyphen
    slug = re.sub(r"[^\w\s-]", "", slug)  # Remove other special chars
    slug = re.sub(r"[\s_]+", "-", slug)  # Spaces/underscores to hyphens
    slug = re.sub(r"-+", "-", slug)  # Multiple hyphens to single
    slug = slug.strip("-").lower()

    return slug or "untitled"


def unique_document_path(root: Path, title: str, start: int = 0) -> Path:
    """
    First free path for a title under root.

    Tries "<slug>.md", then "<slug>-1.md", "<slug>-2.md", ... beginning
    at suffix `start`.
    """
    slug = slugify(title)
    suffix = start
    while True:
        name = f"{slug}.md" if suffix == 0 else f"{slug}-{suffix}.md"
        candidate = Path(root) / name
        if not candidate.exists():
            return candidate
        suffix += 1
