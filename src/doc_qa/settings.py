from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .errors import ConfigurationInvalid

SUPPORTED_LLM_PROVIDERS = ("openai", "anthropic")


@dataclass(slots=True)
class ProviderSettings:
    """Runtime model configuration for embedding and generation calls."""

    llm_provider: str = "openai"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    chat_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    embedding_batch_size: int = 100
    max_completion_tokens: int = 2048


@dataclass(slots=True)
class ChunkingSettings:
    """Token bounds applied by the chunker."""

    tokenizer_encoding: str = "cl100k_base"
    target_chunk_tokens: int = 750
    min_chunk_tokens: int = 600
    max_chunk_tokens: int = 900
    chunk_overlap_tokens: int = 100


@dataclass(slots=True)
class RetrievalSettings:
    """Result-count limits for search."""

    default_top_k: int = 5
    max_top_k: int = 10


@dataclass(slots=True)
class Paths:
    """Source document and persisted corpus locations."""

    document_path: str = "./data/source.docx"
    document_url: str = ""
    corpus_path: str = "data/embedded-data.json"


@dataclass(slots=True)
class Settings:
    """Complete application configuration."""

    providers: ProviderSettings = field(default_factory=ProviderSettings)
    chunking: ChunkingSettings = field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    paths: Paths = field(default_factory=Paths)
    dev_mode: bool = False
    log_level: str = "INFO"
    log_json: bool = False
    otlp_endpoint: str = ""
    parse_errors: list[str] = field(default_factory=list)


def _sanitize_secret(value: str) -> str:
    """Strip BOM characters and whitespace that break HTTP auth headers."""
    return value.lstrip("\ufeff").strip()


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, errors: list[str]) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default


def load_settings() -> Settings:
    """Load environment-backed settings and return a typed config object.

    Malformed integers are not raised here; they are recorded on
    ``Settings.parse_errors`` and reported by :func:`validate_settings`
    together with every other problem.

    Returns:
        Settings populated from the environment (and `.env`, when present).
    """
    load_dotenv()
    errors: list[str] = []
    defaults_p = ProviderSettings()
    defaults_c = ChunkingSettings()
    defaults_r = RetrievalSettings()
    defaults_paths = Paths()

    providers = ProviderSettings(
        llm_provider=os.getenv("LLM_PROVIDER", defaults_p.llm_provider).strip().lower(),
        openai_api_key=_sanitize_secret(os.getenv("OPENAI_API_KEY", "")),
        anthropic_api_key=_sanitize_secret(os.getenv("ANTHROPIC_API_KEY", "")),
        chat_model=os.getenv("OPENAI_CHAT_MODEL", defaults_p.chat_model),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", defaults_p.anthropic_model),
        embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", defaults_p.embedding_model),
        embedding_dimensions=_env_int("EMBEDDING_DIMENSIONS", defaults_p.embedding_dimensions, errors),
        embedding_batch_size=_env_int("EMBEDDING_BATCH_SIZE", defaults_p.embedding_batch_size, errors),
        max_completion_tokens=_env_int("MAX_COMPLETION_TOKENS", defaults_p.max_completion_tokens, errors),
    )
    chunking = ChunkingSettings(
        tokenizer_encoding=os.getenv("TOKENIZER_ENCODING", defaults_c.tokenizer_encoding),
        target_chunk_tokens=_env_int("TARGET_CHUNK_TOKENS", defaults_c.target_chunk_tokens, errors),
        min_chunk_tokens=_env_int("MIN_CHUNK_TOKENS", defaults_c.min_chunk_tokens, errors),
        max_chunk_tokens=_env_int("MAX_CHUNK_TOKENS", defaults_c.max_chunk_tokens, errors),
        chunk_overlap_tokens=_env_int("CHUNK_OVERLAP_TOKENS", defaults_c.chunk_overlap_tokens, errors),
    )
    retrieval = RetrievalSettings(
        default_top_k=_env_int("DEFAULT_TOP_K", defaults_r.default_top_k, errors),
        max_top_k=_env_int("MAX_TOP_K", defaults_r.max_top_k, errors),
    )
    paths = Paths(
        document_path=os.getenv("DOCUMENT_PATH", defaults_paths.document_path),
        document_url=os.getenv("DOCUMENT_URL", defaults_paths.document_url),
        corpus_path=os.getenv("CORPUS_PATH", defaults_paths.corpus_path),
    )
    return Settings(
        providers=providers,
        chunking=chunking,
        retrieval=retrieval,
        paths=paths,
        dev_mode=_env_flag("DEV_MODE"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_flag("LOG_JSON"),
        otlp_endpoint=os.getenv("OTLP_ENDPOINT", "").strip(),
        parse_errors=errors,
    )


def validate_settings(settings: Settings) -> list[str]:
    """Return every missing or invalid setting, in a stable order.

    Args:
        settings: Configuration to check.

    Returns:
        Human-readable problems; empty when the configuration is usable.
    """
    errors = list(settings.parse_errors)
    providers = settings.providers
    chunking = settings.chunking
    retrieval = settings.retrieval

    if providers.llm_provider not in SUPPORTED_LLM_PROVIDERS:
        errors.append(
            f"LLM_PROVIDER must be one of {', '.join(SUPPORTED_LLM_PROVIDERS)} (got {providers.llm_provider!r})"
        )
    if providers.llm_provider == "anthropic" and not providers.anthropic_api_key:
        errors.append("ANTHROPIC_API_KEY is required when using the Anthropic provider")
    if not providers.openai_api_key:
        errors.append("OPENAI_API_KEY is required for embeddings")
    if providers.embedding_dimensions <= 0:
        errors.append("EMBEDDING_DIMENSIONS must be positive")
    if providers.embedding_batch_size <= 0:
        errors.append("EMBEDDING_BATCH_SIZE must be positive")
    if providers.max_completion_tokens <= 0:
        errors.append("MAX_COMPLETION_TOKENS must be positive")

    if chunking.min_chunk_tokens <= 0:
        errors.append("MIN_CHUNK_TOKENS must be positive")
    if not chunking.min_chunk_tokens <= chunking.target_chunk_tokens <= chunking.max_chunk_tokens:
        errors.append("Chunk bounds must satisfy MIN_CHUNK_TOKENS <= TARGET_CHUNK_TOKENS <= MAX_CHUNK_TOKENS")
    if not 0 <= chunking.chunk_overlap_tokens < chunking.max_chunk_tokens:
        errors.append("CHUNK_OVERLAP_TOKENS must be >= 0 and smaller than MAX_CHUNK_TOKENS")

    if retrieval.max_top_k < 1:
        errors.append("MAX_TOP_K must be at least 1")
    if not 1 <= retrieval.default_top_k <= retrieval.max_top_k:
        errors.append("DEFAULT_TOP_K must be between 1 and MAX_TOP_K")

    if not settings.paths.corpus_path:
        errors.append("CORPUS_PATH must not be empty")
    return errors


def require_valid_settings(settings: Settings) -> Settings:
    """Fail fast with the enumerated problem list when settings are unusable."""
    errors = validate_settings(settings)
    if errors:
        raise ConfigurationInvalid(errors)
    return settings
