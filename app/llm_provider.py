#!/usr/bin/env python3
"""
LLM Provider Module

This module talks to an OpenAI-compatible chat-completions endpoint (LM Studio,
llama.cpp server, vLLM, OpenAI itself...) through the OpenAI Python SDK. It
builds the translation prompt, performs exactly one request per call and turns
every failure into a TranslationResult instead of an exception.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://127.0.0.1:1234/v1/chat/completions"
DEFAULT_MODEL = "Unbabel/TowerInstruct-7B-v0.2"
DEFAULT_TIMEOUT = 60.0

# Local servers ignore the key, but the SDK refuses to start without one.
PLACEHOLDER_API_KEY = "not-needed"

CHAT_COMPLETIONS_SUFFIX = "/chat/completions"

TRANSLATE_PROMPT_TEMPLATE = """\
Translate the following text from {source_language} into {target_language}.

{text}

{target_language}:"""


@dataclass
class TranslationResult:
    """
    Outcome of a translation request.

    Attributes:
        text: The translated text, or None when no translation is available
        error: Why no translation is available (None on success)
    """

    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.text is not None

    @classmethod
    def success(cls, text: str) -> "TranslationResult":
        return cls(text=text)

    @classmethod
    def failure(cls, reason: str) -> "TranslationResult":
        return cls(error=reason)


@dataclass
class LLMConfig:
    """
    Configuration for the chat-completions endpoint.

    Attributes:
        endpoint: Full chat-completions URL or API base URL
        model: Model identifier as known by the server
        api_key: API key (optional for local servers)
        system_message: Optional system instruction prepended to every request
        timeout: Transport timeout in seconds
    """

    endpoint: str = DEFAULT_ENDPOINT
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    system_message: str = ""
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.endpoint:
            raise ValueError("Endpoint is required")

        if not self.model:
            raise ValueError("Model name is required")

        if not self.api_key:
            self.api_key = (
                os.environ.get("XLIFF_TRANSLATE_API_KEY")
                or os.environ.get("OPENAI_API_KEY")
                or PLACEHOLDER_API_KEY
            )

        if self.timeout <= 0:
            raise ValueError("Timeout must be positive")

    @property
    def base_url(self) -> str:
        """API base URL derived from the configured endpoint."""
        url = self.endpoint.rstrip("/")
        if url.endswith(CHAT_COMPLETIONS_SUFFIX):
            url = url[: -len(CHAT_COMPLETIONS_SUFFIX)]
        return url


def build_messages(
    text: str,
    target_language: str,
    system_message: str = "",
    source_language: str = "English",
) -> List[Dict[str, str]]:
    """Build the single-turn chat messages for translating ``text``."""
    messages = []
    if system_message:
        messages.append({"role": "system", "content": system_message})

    messages.append(
        {
            "role": "user",
            "content": TRANSLATE_PROMPT_TEMPLATE.format(
                source_language=source_language,
                target_language=target_language,
                text=text,
            ),
        }
    )
    return messages


def extract_completion_text(response: Any) -> Optional[str]:
    """
    Pull the generated text out of a chat-completion response.

    Prefers ``choices[0].message.content`` and falls back to
    ``choices[0].text`` which some backends return instead.
    """
    choices = getattr(response, "choices", None)
    if not choices:
        return None

    choice = choices[0]
    message = getattr(choice, "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if isinstance(content, str) and content.strip():
        return content.strip()

    text = getattr(choice, "text", None)
    if isinstance(text, str) and text.strip():
        return text.strip()

    return None


class LLMClient:
    """
    Client for an OpenAI-compatible chat-completions endpoint.

    Each call performs a single request; SDK level retries are disabled so
    that retry policy stays with the caller.
    """

    def __init__(self, config: LLMConfig):
        """
        Initialize the LLM client.

        Args:
            config: LLMConfig object with endpoint settings

        Raises:
            ImportError: If the OpenAI package is not installed
        """
        self.config = config
        self.client = self._create_client()

        logger.info(
            f"Initialized LLM client with base_url={config.base_url}, "
            f"model={config.model}"
        )

    def _create_client(self):
        """
        Create and configure the OpenAI client for the configured endpoint.

        Raises:
            ImportError: If the OpenAI package is not installed
        """
        try:
            from openai import OpenAI
        except ImportError:
            logger.error(
                "OpenAI package not installed. Please install it using 'pip install openai'."
            )
            raise ImportError(
                "OpenAI package not installed. Run 'pip install openai' first."
            )

        logger.debug(f"Creating OpenAI client with base_url={self.config.base_url}")

        return OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=0,
        )

    def chat_completion(
        self,
        messages: list,
        temperature: float = 0,
        max_tokens: Optional[int] = None,
    ) -> TranslationResult:
        """
        Send one chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0 = deterministic)
            max_tokens: Output length budget for this request

        Returns:
            TranslationResult with the trimmed generated text, or a failure
            for transport errors, non-success status codes, unparsable
            responses and empty content.
        """
        api_params = {
            "model": self.config.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            api_params["max_tokens"] = max_tokens

        logger.debug(
            f"Sending chat completion request to {self.config.base_url} "
            f"(model: {self.config.model}, temperature: {temperature}, "
            f"max_tokens: {max_tokens})"
        )

        try:
            response = self.client.chat.completions.create(**api_params)
        except Exception as e:
            logger.warning(f"Error calling {self.config.base_url}: {e}")
            return TranslationResult.failure(f"request failed: {e}")

        generated_text = extract_completion_text(response)
        if generated_text is None:
            logger.warning("Response did not contain any generated text")
            return TranslationResult.failure("empty response")

        logger.debug(f"Received response: {generated_text[:100]}...")
        return TranslationResult.success(generated_text)

    def translate(
        self,
        text: str,
        target_language: str,
        max_tokens: Optional[int] = None,
        temperature: float = 0,
        source_language: str = "English",
    ) -> TranslationResult:
        """
        Translate a single plain-text string.

        Blank input is returned unchanged without contacting the server.
        """
        if not text or not text.strip():
            return TranslationResult.success(text or "")

        messages = build_messages(
            text,
            target_language,
            system_message=self.config.system_message,
            source_language=source_language,
        )
        return self.chat_completion(
            messages, temperature=temperature, max_tokens=max_tokens
        )
