"""
Markdown ⇄ Notion Sync Engine

Keeps a directory of Markdown files and the pages of a Notion database
consistent, with hash-based conflict detection in both directions.
"""

__version__ = "1.0.0"
