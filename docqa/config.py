"""Application configuration with sensible defaults."""
import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCQA_DATA_DIR", str(BASE_DIR / "data")))
DB_PATH = Path(os.getenv("DOCQA_DB_PATH", str(DATA_DIR / "docqa.sqlite")))

# Provider configuration (any OpenAI-compatible endpoint)
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1536"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "1500"))
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", "30.0"))
EMBEDDING_MAX_BATCH_SIZE = int(os.getenv("EMBEDDING_MAX_BATCH_SIZE", "2048"))
EMBEDDING_MAX_CHARS = int(os.getenv("EMBEDDING_MAX_CHARS", "6000"))  # well under 8192 tokens

# Chunking (character-based to avoid tokenizer dependencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))

# Ingestion
INGEST_BATCH_SIZE = int(os.getenv("INGEST_BATCH_SIZE", "20"))
MAX_CONCURRENT_BATCHES = int(os.getenv("MAX_CONCURRENT_BATCHES", "1"))  # 1 = sequential
MAX_CONTENT_CHARS = int(os.getenv("MAX_CONTENT_CHARS", "50000"))
MIN_CONTENT_LENGTH = int(os.getenv("MIN_CONTENT_LENGTH", "10"))
ROLLBACK_ON_FAILURE = _env_bool("ROLLBACK_ON_FAILURE", "true")

# Retrieval
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.3"))
MATCH_COUNT = int(os.getenv("MATCH_COUNT", "5"))
ANSWER_FALLBACK_ON_ERROR = _env_bool("ANSWER_FALLBACK_ON_ERROR", "false")

# HTTP service
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "120.0"))
MAX_QUESTION_CHARS = int(os.getenv("MAX_QUESTION_CHARS", "2000"))


@dataclass(frozen=True)
class ProviderConfig:
    """Explicit settings handed to a provider client at construction time."""

    api_key: str
    model: str
    base_url: str = OPENAI_BASE_URL
    timeout: float = PROVIDER_TIMEOUT
    max_batch_size: int = EMBEDDING_MAX_BATCH_SIZE


def embedding_provider_config() -> ProviderConfig:
    """Build the embedding provider settings from the environment defaults."""
    return ProviderConfig(
        api_key=OPENAI_API_KEY,
        model=EMBEDDING_MODEL,
        base_url=OPENAI_BASE_URL,
        timeout=PROVIDER_TIMEOUT,
        max_batch_size=EMBEDDING_MAX_BATCH_SIZE,
    )


def generation_provider_config() -> ProviderConfig:
    """Build the generation provider settings from the environment defaults."""
    return ProviderConfig(
        api_key=OPENAI_API_KEY,
        model=CHAT_MODEL,
        base_url=OPENAI_BASE_URL,
        timeout=PROVIDER_TIMEOUT,
        max_batch_size=1,
    )
