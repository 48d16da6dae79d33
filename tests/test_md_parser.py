"""Tests for portfolio markdown parsing."""
import pytest

from app.rag.md_parser import MarkdownParser

SKILLS = """---
title: Skills
tags: [python, go]
---
I work across the stack.

## Frontend

React and TypeScript.

### Testing

Playwright for end-to-end tests.

## Backend

Python services on Postgres.

## Backend

Go workers for queues.
"""


@pytest.fixture
def content_dir(tmp_path):
    directory = tmp_path / "content"
    (directory / "work").mkdir(parents=True)
    (directory / "skills.md").write_text(SKILLS, encoding="utf-8")
    (directory / "bio.md").write_text("Based in Lisbon, writing software since 2012.\n", encoding="utf-8")
    (directory / "work" / "acme.md").write_text("# Acme\n\nLed the data team.\n", encoding="utf-8")
    (directory / "notes.txt").write_text("not markdown", encoding="utf-8")
    return directory


def test_frontmatter_is_parsed_and_removed(content_dir):
    document = MarkdownParser().parse_file(content_dir / "skills.md", base_dir=content_dir)

    assert document.frontmatter == {"title": "Skills", "tags": ["python", "go"]}
    assert not document.body.startswith("---")


def test_file_is_split_at_top_level_headings(content_dir):
    items = MarkdownParser().parse_file(content_dir / "skills.md", base_dir=content_dir).items

    assert [item.path for item in items] == [
        "skills.md",
        "skills.md#frontend",
        "skills.md#backend",
        "skills.md#backend-2",
    ]
    assert items[0].heading == "Skills"
    assert items[0].content == "I work across the stack."
    assert items[1].heading == "Frontend"
    assert "### Testing" in items[1].content
    assert "Playwright" in items[1].content
    assert items[3].content == "Go workers for queues."


def test_deeper_split_level(content_dir):
    items = MarkdownParser(max_split_level=3).parse_file(content_dir / "skills.md").items

    assert "skills.md#testing" in [item.path for item in items]


def test_file_without_headings_is_one_item(content_dir):
    items = MarkdownParser().parse_file(content_dir / "bio.md", base_dir=content_dir).items

    assert len(items) == 1
    assert items[0].path == "bio.md"
    assert items[0].heading is None


def test_parse_directory_is_recursive_and_sorted(content_dir):
    items = MarkdownParser().parse_directory(content_dir)
    paths = [item.path for item in items]

    assert paths[0] == "bio.md"
    assert "work/acme.md#acme" in paths
    assert all(".txt" not in path for path in paths)
    assert items[-1].path == "work/acme.md#acme"


def test_items_serialize_for_seeding(content_dir):
    item = MarkdownParser().parse_directory(content_dir)[0]
    assert item.to_dict() == {
        "path": "bio.md",
        "heading": None,
        "content": "Based in Lisbon, writing software since 2012.",
    }


def test_invalid_frontmatter_is_ignored(tmp_path):
    path = tmp_path / "broken.md"
    path.write_text("---\n: [unclosed\n---\nBody text here.\n", encoding="utf-8")

    document = MarkdownParser().parse_file(path)

    assert document.frontmatter == {}
    assert document.items[0].content == "Body text here."


def test_missing_inputs(tmp_path):
    parser = MarkdownParser()
    with pytest.raises(FileNotFoundError):
        parser.parse_file(tmp_path / "missing.md")
    with pytest.raises(FileNotFoundError):
        parser.parse_directory(tmp_path / "missing")
