"""Markdown parser that turns portfolio files into seedable items.

Handles:
- YAML frontmatter parsing
- Splitting a file into heading-delimited items
- Stable item paths of the form "skills.md#frontend"
"""
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml
import structlog

from app.rag.sections import create_anchor_id

logger = structlog.get_logger()


@dataclass
class PortfolioItem:
    """One seedable unit of portfolio knowledge."""

    path: str
    heading: Optional[str]
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "heading": self.heading, "content": self.content}


@dataclass
class MarkdownDocument:
    """Parsed markdown file."""

    path: Path
    frontmatter: Dict[str, Any]
    body: str
    items: List[PortfolioItem] = field(default_factory=list)


class MarkdownParser:
    """Parser for portfolio markdown with frontmatter support."""

    # YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)

    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$", re.MULTILINE)

    def __init__(self, max_split_level: int = 2):
        """Initialize the parser.

        Args:
            max_split_level: Headings at this level or shallower start a new item;
                deeper headings stay inside their parent item
        """
        self.max_split_level = max_split_level

    def parse_file(self, file_path: Path, base_dir: Optional[Path] = None) -> MarkdownDocument:
        """Parse a markdown file into portfolio items.

        Args:
            file_path: Path to the markdown file
            base_dir: Item paths are made relative to this directory

        Raises:
            FileNotFoundError: If file doesn't exist
            UnicodeDecodeError: If file encoding is invalid
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Markdown file not found: {file_path}")

        try:
            content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.error("markdown_encoding_error", path=str(file_path), error=str(e))
            raise

        frontmatter, body = self._parse_frontmatter(content)
        relative = file_path.relative_to(base_dir).as_posix() if base_dir else file_path.name

        items = self.split_items(relative, body, default_heading=frontmatter.get("title"))

        logger.info(
            "markdown_parsed",
            path=relative,
            has_frontmatter=bool(frontmatter),
            item_count=len(items),
        )

        return MarkdownDocument(path=file_path, frontmatter=frontmatter, body=body, items=items)

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = {}

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end() :]

    def split_items(
        self, relative_path: str, body: str, default_heading: Optional[str] = None
    ) -> List[PortfolioItem]:
        """Split markdown text into one item per top-level section.

        Text before the first splitting heading becomes an item whose path is
        the bare file path. Anchors repeated within a file get -2, -3 suffixes.
        """
        splits = [
            m for m in self.HEADING_PATTERN.finditer(body)
            if len(m.group(1)) <= self.max_split_level
        ]

        items = []
        preamble = body[: splits[0].start()] if splits else body
        if preamble.strip():
            items.append(
                PortfolioItem(
                    path=relative_path,
                    heading=default_heading,
                    content=preamble.strip(),
                )
            )

        seen: Dict[str, int] = {}
        for i, match in enumerate(splits):
            heading = match.group(2).strip()
            end = splits[i + 1].start() if i + 1 < len(splits) else len(body)
            section_text = body[match.end() : end].strip()
            if not section_text:
                continue

            anchor = create_anchor_id(heading) or "section"
            seen[anchor] = seen.get(anchor, 0) + 1
            if seen[anchor] > 1:
                anchor = f"{anchor}-{seen[anchor]}"

            items.append(
                PortfolioItem(
                    path=f"{relative_path}#{anchor}",
                    heading=heading,
                    content=section_text,
                )
            )

        return items

    def parse_directory(self, content_dir: Path) -> List[PortfolioItem]:
        """Parse every .md file under a directory (sorted, recursive).

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        if not content_dir.exists():
            raise FileNotFoundError(f"Content directory not found: {content_dir}")

        items: List[PortfolioItem] = []
        for file_path in sorted(content_dir.rglob("*.md")):
            items.extend(self.parse_file(file_path, base_dir=content_dir).items)

        logger.info("portfolio_files_parsed", content_dir=str(content_dir), items=len(items))
        return items
