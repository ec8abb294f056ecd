from __future__ import annotations

from typing import Iterator, Protocol

import anthropic
import structlog
from openai import OpenAI

from .errors import GenerationProviderError, ProviderErrorKind, provider_error_from
from .settings import ProviderSettings

logger = structlog.get_logger(logger_name=__name__)


class GenerationClient(Protocol):
    """Chat model that answers a system + user prompt, whole or streamed."""

    model: str

    def generate(self, system: str, user: str) -> str: ...

    def stream(self, system: str, user: str) -> Iterator[str]: ...


class OpenAIGenerationClient:
    """Generation via OpenAI chat completions."""

    provider_name = "openai"

    def __init__(self, settings: ProviderSettings, client: OpenAI | None = None):
        self.model = settings.chat_model
        self.max_tokens = settings.max_completion_tokens
        self.client = client if client is not None else OpenAI(api_key=settings.openai_api_key or None)

    def _messages(self, system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    def generate(self, system: str, user: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=self._messages(system, user),
            )
        except Exception as exc:
            raise provider_error_from(exc, GenerationProviderError, self.provider_name, "chat completion") from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise GenerationProviderError(
                f"Unreadable chat completion: {exc}",
                ProviderErrorKind.MALFORMED,
                provider_name=self.provider_name,
            ) from exc
        return content or ""

    def stream(self, system: str, user: str) -> Iterator[str]:
        """Yield answer text fragments as they arrive.

        Closing the returned generator closes the HTTP response.
        """
        try:
            response_stream = self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=self._messages(system, user),
                stream=True,
            )
        except Exception as exc:
            raise provider_error_from(exc, GenerationProviderError, self.provider_name, "chat stream") from exc

        try:
            for event in response_stream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield content
        except GenerationProviderError:
            raise
        except Exception as exc:
            raise provider_error_from(exc, GenerationProviderError, self.provider_name, "chat stream") from exc
        finally:
            response_stream.close()


class AnthropicGenerationClient:
    """Generation via the Anthropic Messages API; the system prompt is a top-level argument."""

    provider_name = "anthropic"

    def __init__(self, settings: ProviderSettings, client: anthropic.Anthropic | None = None):
        self.model = settings.anthropic_model
        self.max_tokens = settings.max_completion_tokens
        self.client = client if client is not None else anthropic.Anthropic(api_key=settings.anthropic_api_key or None)

    def generate(self, system: str, user: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except Exception as exc:
            raise provider_error_from(exc, GenerationProviderError, self.provider_name, "messages request") from exc

        text_blocks = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        return "".join(text_blocks)

    def stream(self, system: str, user: str) -> Iterator[str]:
        try:
            with self.client.messages.stream(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
            ) as message_stream:
                for text in message_stream.text_stream:
                    if text:
                        yield text
        except GenerationProviderError:
            raise
        except Exception as exc:
            raise provider_error_from(exc, GenerationProviderError, self.provider_name, "messages stream") from exc


def create_generation_client(settings: ProviderSettings) -> GenerationClient:
    """Build the client for the configured `llm_provider`."""
    if settings.llm_provider == "anthropic":
        logger.debug("generation_client_selected", provider="anthropic", model=settings.anthropic_model)
        return AnthropicGenerationClient(settings)
    logger.debug("generation_client_selected", provider="openai", model=settings.chat_model)
    return OpenAIGenerationClient(settings)
