"""WordPress REST API client."""
import httpx
from typing import Any, Dict, List, Optional
import structlog

from app import config
from app.errors import (
    ConfigurationError,
    MalformedResponseError,
    PermanentError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from app.sync.webhook import WordPressPost

logger = structlog.get_logger()

USER_AGENT = "Portfolio-RAG-Sync/1.0"


class WordPressClient:
    """Async client for the wp/v2 posts endpoints."""

    def __init__(
        self,
        api_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            api_url: REST base, e.g. https://blog.example.com/wp-json/wp/v2
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used to stub WordPress in tests
        """
        self.api_url = (api_url if api_url is not None else config.WORDPRESS_API_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.transport = transport

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        if not self.api_url:
            raise ConfigurationError("WORDPRESS_API_URL is not configured")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                return await client.get(f"{self.api_url}{path}", params=params)
        except httpx.TimeoutException as e:
            logger.warning("wordpress_request_timeout", path=path)
            raise ServiceTimeoutError("WordPress request timed out", original_error=e) from e
        except httpx.TransportError as e:
            logger.warning("wordpress_network_error", path=path, error=str(e))
            raise ServiceTimeoutError("WordPress network error", original_error=e) from e

    @staticmethod
    def _check(response: httpx.Response, path: str) -> None:
        if response.status_code >= 500:
            raise ServiceUnavailableError(
                "WordPress server error",
                details={"path": path, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise PermanentError(
                "WordPress rejected request",
                details={"path": path, "status_code": response.status_code},
            )

    async def fetch_post(self, post_id: int) -> Optional[WordPressPost]:
        """Fetch a single post.

        Returns:
            The post, or None if WordPress reports 404
        """
        path = f"/posts/{post_id}"
        response = await self._get(path)

        if response.status_code == 404:
            logger.warning("wordpress_post_not_found", wp_post_id=post_id)
            return None

        self._check(response, path)

        try:
            return WordPressPost.model_validate(response.json())
        except ValueError as e:
            raise MalformedResponseError(
                "Invalid post payload from WordPress", original_error=e
            ) from e

    async def fetch_published_posts(self, per_page: int = 100) -> List[WordPressPost]:
        """Fetch every published post, following the X-WP-TotalPages header."""
        posts: List[WordPressPost] = []
        page = 1

        while True:
            response = await self._get(
                "/posts", params={"status": "publish", "per_page": per_page, "page": page}
            )
            self._check(response, "/posts")

            try:
                posts.extend(WordPressPost.model_validate(item) for item in response.json())
            except ValueError as e:
                raise MalformedResponseError(
                    "Invalid post list from WordPress", original_error=e
                ) from e

            total_pages = int(response.headers.get("X-WP-TotalPages", "1"))
            if page >= total_pages:
                break
            page += 1

        logger.info("wordpress_posts_fetched", count=len(posts))
        return posts
