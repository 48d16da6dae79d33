"""HTML cleanup for blog post markup before chunking and hashing."""
import re

SCRIPT_PATTERN = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
STYLE_PATTERN = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]+>")

# Only the entities WordPress emits in rendered post content
HTML_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&#039;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def clean_content(raw_markup: str) -> str:
    """Strip markup from rendered HTML and normalize whitespace.

    Script and style blocks are removed with their content. Every other tag
    becomes a single space so words on either side of a tag stay separated.

    Args:
        raw_markup: Rendered HTML (or plain text)

    Returns:
        Plain text, trimmed, with space runs collapsed to one space and
        blank-line runs collapsed to one blank line
    """
    if not raw_markup:
        return ""

    cleaned = SCRIPT_PATTERN.sub("", raw_markup)
    cleaned = STYLE_PATTERN.sub("", cleaned)
    cleaned = TAG_PATTERN.sub(" ", cleaned)

    # &amp; last so "&amp;lt;" decodes to "&lt;" and not "<"
    for entity, replacement in HTML_ENTITIES:
        cleaned = cleaned.replace(entity, replacement)

    cleaned = cleaned.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = re.sub(r"[ \t\f\v]+", " ", cleaned)
    cleaned = re.sub(r" *\n *", "\n", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)

    return cleaned.strip()


def strip_html(html: str) -> str:
    """Remove all tags and collapse whitespace into single spaces."""
    if not html:
        return ""
    return re.sub(r"\s+", " ", TAG_PATTERN.sub(" ", html)).strip()
