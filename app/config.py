"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
CONTENT_DIR = Path(os.getenv("CONTENT_DIR", str(BASE_DIR / "content")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# OpenAI-compatible API
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
CONTENT_MODEL = os.getenv("CONTENT_MODEL", "gpt-3.5-turbo")
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10.0"))

# Embedding generation
EMBED_MAX_RETRIES = int(os.getenv("EMBED_MAX_RETRIES", "3"))
EMBED_BASE_DELAY = float(os.getenv("EMBED_BASE_DELAY", "1.0"))       # seconds, doubles per retry
EMBED_MAX_INPUT_LENGTH = int(os.getenv("EMBED_MAX_INPUT_LENGTH", "8000"))  # characters
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "100"))
EMBED_BATCH_DELAY = float(os.getenv("EMBED_BATCH_DELAY", "0.1"))
EMBED_CHUNK_DELAY = float(os.getenv("EMBED_CHUNK_DELAY", "0.1"))
EMBEDDING_COST_PER_1K_TOKENS = 0.00002  # text-embedding-3-small

# Chunking (token-based, tiktoken vocabulary)
MAX_TOKENS_PER_CHUNK = int(os.getenv("MAX_TOKENS_PER_CHUNK", "1000"))
CHUNK_OVERLAP_TOKENS = int(os.getenv("CHUNK_OVERLAP_TOKENS", "100"))
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", "50000"))   # characters per document
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))          # characters
TOKENIZER_ENCODING = os.getenv("TOKENIZER_ENCODING", "cl100k_base")
FALLBACK_CHARS_PER_TOKEN = 4

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
SIM_THRESHOLD = float(os.getenv("SIM_THRESHOLD", "0.1"))
CONTEXT_MATCHES = int(os.getenv("CONTEXT_MATCHES", "3"))
SECTION_MIN_CONFIDENCE = float(os.getenv("SECTION_MIN_CONFIDENCE", "0.3"))

# Answer generation
PORTFOLIO_OWNER = os.getenv("PORTFOLIO_OWNER", "the site owner")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.2"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "300"))

# Question guardrails
QUESTION_MIN_LENGTH = int(os.getenv("QUESTION_MIN_LENGTH", "3"))
QUESTION_MAX_LENGTH = int(os.getenv("QUESTION_MAX_LENGTH", "500"))

# Rate limiting (process-local)
RATE_LIMIT_SECONDS = float(os.getenv("RATE_LIMIT_SECONDS", "5.0"))
RATE_LIMIT_MAX_CLIENTS = int(os.getenv("RATE_LIMIT_MAX_CLIENTS", "10000"))
RATE_LIMIT_TTL = float(os.getenv("RATE_LIMIT_TTL", "300"))

# Blog sync webhook
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
WEBHOOK_MAX_AGE = int(os.getenv("WEBHOOK_MAX_AGE", "300"))
WORDPRESS_API_URL = os.getenv("WORDPRESS_API_URL", "")
BLOG_SYNC_URL = os.getenv("BLOG_SYNC_URL", "http://localhost:5000/api/blog-sync")

# Portfolio knowledge management
PORTFOLIO_SECRET = os.getenv("PORTFOLIO_SECRET", "")

# Blog content assistant
CONTENT_MAX_LENGTH = int(os.getenv("CONTENT_MAX_LENGTH", "8000"))
BLOG_SEARCH_POST_LIMIT = int(os.getenv("BLOG_SEARCH_POST_LIMIT", "8"))
BLOG_SEARCH_PREVIEW_LENGTH = int(os.getenv("BLOG_SEARCH_PREVIEW_LENGTH", "500"))  # characters

# Public URLs (empty = relative links)
SITE_URL = os.getenv("SITE_URL", "").rstrip("/")

# Storage
DB_PATH = DATA_DIR / "assistant.sqlite"
VECTOR_INDEX_PATH = DATA_DIR / "vectors.index"
METADATA_PATH = DATA_DIR / "metadata.json"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
