"""OpenAI-compatible API client with error classification."""
import httpx
from typing import Any, Dict, List, Optional, Union
import structlog

from app import config
from app.errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedResponseError,
    PermanentError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)

logger = structlog.get_logger()


class OpenAIClient:
    """Async client for the embeddings and chat completions endpoints."""

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL (defaults to config.OPENAI_BASE_URL)
            api_key: Bearer token (defaults to config.OPENAI_API_KEY)
            timeout: Request timeout in seconds (defaults to config.REQUEST_TIMEOUT)
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.base_url = (base_url or config.OPENAI_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded response.

        Raises:
            ConfigurationError: If no API key is configured
            RateLimitError, ServiceUnavailableError, ServiceTimeoutError: Retryable failures
            AuthenticationError, PermanentError, MalformedResponseError: Permanent failures
        """
        if not self.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")

        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}{path}", json=payload, headers=headers
                )
        except httpx.TimeoutException as e:
            logger.warning("openai_request_timeout", path=path, timeout=self.timeout)
            raise ServiceTimeoutError(
                "Request timed out", details={"path": path}, original_error=e
            ) from e
        except httpx.TransportError as e:
            logger.warning("openai_network_error", path=path, error=str(e))
            raise ServiceTimeoutError(
                "Network error", details={"path": path}, original_error=e
            ) from e

        self._raise_for_status(response, path)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                "Response body is not valid JSON", details={"path": path}, original_error=e
            ) from e

        if not isinstance(data, dict):
            raise MalformedResponseError(
                "Response body is not a JSON object",
                details={"path": path, "type": type(data).__name__},
            )

        return data

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        status = response.status_code
        if status < 400:
            return

        details = {"path": path, "status_code": status}
        logger.error("openai_http_error", **details)

        if status == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                "API rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                details=details,
            )
        if status >= 500:
            raise ServiceUnavailableError("Upstream server error", details=details)
        if status in (401, 403):
            raise AuthenticationError("Upstream rejected credentials", details=details)
        raise PermanentError("Upstream rejected request", details=details)

    async def embeddings(
        self,
        texts: Union[str, List[str]],
        model: str = None,
    ) -> Dict[str, Any]:
        """Generate embeddings for one text or a list of texts.

        Args:
            texts: Text or list of texts to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'data' (list of {'embedding', 'index'}) and 'usage'
        """
        model = model or config.EMBEDDING_MODEL

        logger.debug(
            "embedding_request",
            model=model,
            input_count=1 if isinstance(texts, str) else len(texts),
        )

        data = await self._post(
            "/embeddings",
            {"model": model, "input": texts, "encoding_format": "float"},
        )

        items = data.get("data")
        if not isinstance(items, list):
            raise MalformedResponseError("Embedding response missing 'data' list")
        if not all(isinstance(item, dict) for item in items):
            raise MalformedResponseError("Embedding response items must be objects")

        return data

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature
            max_tokens: Completion token budget

        Returns:
            Dict with 'content' (generated text, may be empty) and 'tokens' (total usage)
        """
        model = model or config.CHAT_MODEL

        payload: Dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens

        logger.info("chat_request", model=model, message_count=len(messages))

        data = await self._post("/chat/completions", payload)

        choices = data.get("choices")
        if not isinstance(choices, list):
            raise MalformedResponseError("Chat response missing 'choices' list")

        content = ""
        if choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if not isinstance(message, dict):
                raise MalformedResponseError("Chat response choice has no message object")
            content = message.get("content") or ""
            if not isinstance(content, str):
                raise MalformedResponseError("Chat response content is not text")

        tokens = (data.get("usage") or {}).get("total_tokens", 0)

        logger.info("chat_response", model=model, response_length=len(content), tokens=tokens)

        return {"content": content.strip(), "tokens": tokens}
