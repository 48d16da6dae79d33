"""Question answering over the portfolio knowledge base.

Each question moves once through

    RECEIVED -> EMBEDDING -> SEARCHING -> GENERATING -> ANSWERED
                                                   \\-> REFUSED

with REFUSED reachable from RECEIVED (denylisted topic), SEARCHING (no
relevant matches) and GENERATING (empty output or the model declined).
There are no retries at this level: embedding retries happen inside the
embedding generator, and any hard failure propagates to the caller.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import structlog

from app import config
from app.errors import ValidationError
from app.rag.citations import CitationBuilder
from app.rag.retriever import Retriever, format_context
from app.rag.sections import Citation

logger = structlog.get_logger()

DENIED_KEYWORDS = (
    "salary", "wage", "income",
    "personal", "private", "confidential", "secret",
    "medical", "health", "doctor",
    "political", "politics", "vote",
    "legal", "lawyer", "advice",
    "controversial", "opinion",
    "password", "login", "access",
    "relationship", "dating", "family",
)

REFUSAL_INDICATORS = (
    "cannot answer",
    "not provided",
    "not mentioned",
    "no information",
    "outside the scope",
)


def out_of_scope_message() -> str:
    return (
        f"I can only answer questions about {config.PORTFOLIO_OWNER}'s portfolio "
        f"(bio, CV, skills, experience, projects)."
    )


def denied_topic_message() -> str:
    return (
        f"I can only answer questions about {config.PORTFOLIO_OWNER}'s portfolio, "
        f"skills, experience, and projects. I don't discuss personal, financial, "
        f"or confidential topics."
    )


SYSTEM_PROMPT = """You are {owner}'s portfolio assistant. Answer questions ONLY from the provided context about their CV, skills, experience, and projects.

Rules:
- Answer only from the provided context
- If the question cannot be answered from context, refuse politely
- Keep answers under 180 words
- Include brief source references like (skills.md) or (experience.md)
- Be conversational and helpful
- No financial advice or personal information"""


class QuestionState(Enum):
    RECEIVED = "received"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    GENERATING = "generating"
    ANSWERED = "answered"
    REFUSED = "refused"


@dataclass
class ChatAnswer:
    """Terminal outcome of a question."""

    state: QuestionState
    answer: Optional[str] = None
    message: Optional[str] = None
    citations: List[Citation] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def refusal(self) -> bool:
        return self.state is QuestionState.REFUSED

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "answer": self.answer,
            "refusal": self.refusal,
            "citations": [c.to_dict() for c in self.citations],
        }
        if self.message:
            data["message"] = self.message
        return data


def validate_question(question: Any) -> Optional[str]:
    """Check a question's shape and topic.

    Args:
        question: Raw question from the request

    Returns:
        The denylisted keyword the question contains, or None if allowed

    Raises:
        ValidationError: If the question is missing, too short or too long
    """
    if not question or not isinstance(question, str):
        raise ValidationError("Question is required")

    trimmed = question.strip()
    if len(trimmed) < config.QUESTION_MIN_LENGTH:
        raise ValidationError("Question too short")
    if len(trimmed) > config.QUESTION_MAX_LENGTH:
        raise ValidationError(
            f"Question too long (max {config.QUESTION_MAX_LENGTH} characters)"
        )

    lowered = trimmed.lower()
    for keyword in DENIED_KEYWORDS:
        if keyword in lowered:
            return keyword
    return None


def is_refusal(text: str) -> bool:
    lowered = text.lower()
    return any(indicator in lowered for indicator in REFUSAL_INDICATORS)


class RAGOrchestrator:
    """Drives a question through retrieval and grounded generation."""

    def __init__(
        self,
        retriever: Retriever,
        llm_client,
        citation_builder: Optional[CitationBuilder] = None,
        model: str = None,
        context_matches: int = None,
        temperature: float = None,
        max_tokens: int = None,
    ):
        """Initialize the orchestrator.

        Args:
            retriever: Embeds questions and searches the vector store
            llm_client: Object with an async chat(messages, model, temperature, max_tokens)
            citation_builder: Builds citations for answered questions
            model: Chat model (default from config)
            context_matches: Matches used as prompt context and citations
            temperature: Sampling temperature
            max_tokens: Completion token budget
        """
        self.retriever = retriever
        self.llm_client = llm_client
        self.citation_builder = citation_builder or CitationBuilder()
        self.model = model or config.CHAT_MODEL
        self.context_matches = context_matches or config.CONTEXT_MATCHES
        self.temperature = temperature if temperature is not None else config.CHAT_TEMPERATURE
        self.max_tokens = max_tokens or config.CHAT_MAX_TOKENS

    @staticmethod
    def _transition(state: QuestionState, **context) -> QuestionState:
        logger.debug("question_state_changed", state=state.value, **context)
        return state

    def _refuse(self, message: str, reason: str, tokens_used: int = 0) -> ChatAnswer:
        self._transition(QuestionState.REFUSED, reason=reason)
        logger.info("question_refused", reason=reason)
        return ChatAnswer(
            state=QuestionState.REFUSED, message=message, tokens_used=tokens_used
        )

    async def answer(self, question: Any) -> ChatAnswer:
        """Answer a question from the indexed portfolio content.

        Raises:
            ValidationError: If the question fails shape/length checks
            EmbeddingError: If the question cannot be embedded
            RAGServiceError: If the generation call fails
        """
        self._transition(QuestionState.RECEIVED)

        denied = validate_question(question)
        if denied:
            return self._refuse(denied_topic_message(), reason="denied_topic")

        question = question.strip()

        self._transition(QuestionState.EMBEDDING, question_length=len(question))
        # Retriever embeds then searches; the state covers both steps
        matches = await self.retriever.retrieve(question)
        self._transition(QuestionState.SEARCHING, matches=len(matches))

        if not matches:
            return self._refuse(out_of_scope_message(), reason="no_matches")

        top_matches = matches[: self.context_matches]

        self._transition(QuestionState.GENERATING, context_matches=len(top_matches))
        response = await self.llm_client.chat(
            self._build_messages(question, top_matches),
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )

        text = response.get("content", "")
        tokens = response.get("tokens", 0)

        if not text:
            return self._refuse(out_of_scope_message(), reason="empty_output", tokens_used=tokens)

        if is_refusal(text):
            return self._refuse(out_of_scope_message(), reason="model_refused", tokens_used=tokens)

        citations = self.citation_builder.build(top_matches, question)

        self._transition(QuestionState.ANSWERED, citations=len(citations))
        logger.info(
            "question_answered",
            answer_length=len(text),
            citations=len(citations),
            tokens=tokens,
        )

        return ChatAnswer(
            state=QuestionState.ANSWERED,
            answer=text,
            citations=citations,
            tokens_used=tokens,
        )

    def _build_messages(self, question, matches) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(owner=config.PORTFOLIO_OWNER)},
            {
                "role": "user",
                "content": f"Question: {question}\n\nContext:\n{format_context(matches)}",
            },
        ]
