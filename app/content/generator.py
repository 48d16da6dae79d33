"""Blog content assistant: overviews, takeaways and questions about a post."""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import structlog

from app import config
from app.errors import MalformedResponseError, ValidationError
from app.rag.cleaner import strip_html

logger = structlog.get_logger()


@dataclass(frozen=True)
class Overview:
    name = "overview"


@dataclass(frozen=True)
class Takeaways:
    name = "takeaways"


@dataclass(frozen=True)
class Questions:
    name = "questions"


@dataclass(frozen=True)
class CustomQuestion:
    question: str
    name = "custom_question"


@dataclass(frozen=True)
class BlogSearch:
    question: str
    name = "blog_search"


ContentMode = Union[Overview, Takeaways, Questions, CustomQuestion, BlogSearch]

MODE_TYPES = {
    cls.name: cls for cls in (Overview, Takeaways, Questions, CustomQuestion, BlogSearch)
}

# Completion token budget per mode
MAX_TOKENS = {
    "overview": 600,
    "takeaways": 250,
    "questions": 150,
    "custom_question": 400,
    "blog_search": 500,
}

TEMPERATURE = 0.3

SYSTEM_INSTRUCTIONS = {
    "overview": (
        "You are an engaging content summarizer. Write a quick overview of two or "
        "three paragraphs followed by a detailed summary, in clear flowing prose."
    ),
    "takeaways": (
        "You are a content curator. Write three to six practical, specific "
        "takeaways as an HTML list."
    ),
    "questions": (
        "You are a curious reader. Suggest natural, specific questions a reader "
        "would ask after reading the content."
    ),
    "custom_question": (
        "You answer questions about the provided content directly and "
        "specifically. Say so when the content does not fully answer the question."
    ),
    "blog_search": (
        "You help readers find insights across the blog. Draw connections across "
        "the provided posts and suggest related topics when the answer is not there."
    ),
}

QUESTIONS_INSTRUCTION = (
    "Generate exactly 3 short questions about this content. "
    'Return ONLY a JSON array of strings, e.g. ["How do I start?", "What are the pitfalls?"].'
)


@dataclass
class GeneratedContent:
    content: str
    mode_name: str
    tokens_used: int = 0
    questions: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": True,
            "content": self.content,
            "type": self.mode_name,
            "tokens_used": self.tokens_used,
        }
        if self.questions is not None:
            data["questions"] = self.questions
        return data


def parse_content_mode(mode_type: Any, question: Any = None) -> ContentMode:
    """Build a content mode from request fields.

    Raises:
        ValidationError: Unknown type, or a question-based type without a question
    """
    cls = MODE_TYPES.get(mode_type) if isinstance(mode_type, str) else None
    if cls is None:
        raise ValidationError(
            f"Invalid type. Must be one of: {', '.join(MODE_TYPES)}",
            details={"type": str(mode_type)[:50]},
        )

    if cls in (CustomQuestion, BlogSearch):
        if not isinstance(question, str) or not question.strip():
            raise ValidationError(f"Missing question parameter for {cls.name} type")
        return cls(question=question.strip())

    return cls()


def build_user_prompt(mode: ContentMode, content: str) -> str:
    if isinstance(mode, Questions):
        return f"{QUESTIONS_INSTRUCTION}\n\n{content}"
    if isinstance(mode, CustomQuestion):
        return f'Answer this question about the content: "{mode.question}"\n\nContent:\n{content}'
    if isinstance(mode, BlogSearch):
        return (
            f'Answer this question about the blog: "{mode.question}"\n\n'
            f"Available Blog Content:\n{content}"
        )
    if isinstance(mode, Takeaways):
        return f"Write the key takeaways for this content.\n\n{content}"
    return f"Write an overview of this content.\n\n{content}"


def parse_questions(text: str) -> List[str]:
    """Read generated questions as a JSON array, falling back to one per line."""
    match = re.search(r"\[.*\]", text, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return [str(q).strip() for q in parsed if str(q).strip()]

    questions = []
    for line in text.splitlines():
        line = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip().strip('"')
        if line:
            questions.append(line)
    return questions


def build_blog_search_context(posts: List[Dict[str, Any]], preview_length: int = None) -> Dict[str, Any]:
    """Summarize recent posts into one text block for blog-wide questions.

    Args:
        posts: Document rows with id, title, excerpt, markup and dates, newest first
        preview_length: Characters of body text kept per post

    Returns:
        Dict with 'content', 'postCount' and 'posts' ({slug, title, date})
    """
    preview_length = preview_length or config.BLOG_SEARCH_PREVIEW_LENGTH

    if not posts:
        return {
            "content": f"{config.PORTFOLIO_OWNER}'s blog has no published posts yet.",
            "postCount": 0,
            "posts": [],
        }

    lines = [f"{config.PORTFOLIO_OWNER}'s Blog - {len(posts)} Recent Posts:", ""]
    summaries = []

    for number, post in enumerate(posts, start=1):
        title = strip_html(post.get("title") or "")
        date = post.get("modified_at") or post.get("created_at")
        excerpt = strip_html(post.get("excerpt") or "")
        body = strip_html(post.get("markup") or "")

        lines.append(f'{number}. "{title}"')
        if date:
            lines.append(f"Published: {date[:10]}")
        if excerpt:
            lines.append(f"Summary: {excerpt}")
        if body:
            lines.append(f"Content Preview: {body[:preview_length]}...")
        lines.append("")

        summaries.append({"slug": post["id"], "title": title, "date": date})

    return {
        "content": "\n".join(lines).strip(),
        "postCount": len(posts),
        "posts": summaries,
    }


class ContentGenerator:
    """Generates reader aids for blog content with a chat model."""

    def __init__(self, llm_client, model: str = None, max_content_length: int = None):
        self.llm_client = llm_client
        self.model = model or config.CONTENT_MODEL
        self.max_content_length = max_content_length or config.CONTENT_MAX_LENGTH

    def _truncate(self, content: str) -> str:
        if len(content) > self.max_content_length:
            return content[: self.max_content_length] + "..."
        return content

    async def generate(self, content: str, mode: ContentMode) -> GeneratedContent:
        """Generate content for one mode.

        Raises:
            ValidationError: If content is empty
            MalformedResponseError: If the model returns nothing
            RAGServiceError: If the chat call fails
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Missing content parameter")

        response = await self.llm_client.chat(
            [
                {"role": "system", "content": SYSTEM_INSTRUCTIONS[mode.name]},
                {"role": "user", "content": build_user_prompt(mode, self._truncate(content))},
            ],
            model=self.model,
            temperature=TEMPERATURE,
            max_tokens=MAX_TOKENS[mode.name],
        )

        text = response.get("content", "")
        if not text:
            raise MalformedResponseError("No content generated", details={"type": mode.name})

        tokens = response.get("tokens", 0)
        logger.info("content_generated", type=mode.name, tokens=tokens, length=len(text))

        return GeneratedContent(
            content=text,
            mode_name=mode.name,
            tokens_used=tokens,
            questions=parse_questions(text) if isinstance(mode, Questions) else None,
        )
