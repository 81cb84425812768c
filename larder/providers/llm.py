"""
Generative backends backed by LLM APIs.
"""

import logging
import os
from typing import Optional

from ..errors import BackendError, BackendUnavailable
from .base import Attachment, EXTRACTION_SYSTEM_PROMPT, get_registry

logger = logging.getLogger(__name__)


def _attachment_text(attachment: Attachment) -> str:
    """Decode a text attachment for backends without document support."""
    try:
        return attachment.data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BackendError(
            f"Cannot send {attachment.media_type} attachment as text: {e}"
        ) from e


class AnthropicBackend:
    """
    Backend using Anthropic's Messages API.

    Authentication (checked in priority order):
    1. api_key parameter (if provided)
    2. ANTHROPIC_API_KEY

    Images are sent as base64 image blocks, PDFs as document blocks.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 2048,
        system: str | None = None,
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicBackend requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens
        self.system = system or EXTRACTION_SYSTEM_PROMPT

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError(
                "Anthropic authentication required. Set ANTHROPIC_API_KEY "
                "(API key from console.anthropic.com)"
            )

        self.client = Anthropic(api_key=key)

    @staticmethod
    def _content(prompt: str, attachment: Optional[Attachment]) -> list[dict]:
        blocks: list[dict] = []
        if attachment is not None:
            source = {
                "type": "base64",
                "media_type": attachment.media_type,
                "data": attachment.to_base64(),
            }
            if attachment.is_image:
                blocks.append({"type": "image", "source": source})
            elif attachment.media_type == "application/pdf":
                blocks.append({"type": "document", "source": source})
            else:
                prompt = f"{prompt}\n\n{_attachment_text(attachment)}"
        blocks.append({"type": "text", "text": prompt})
        return blocks

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        """Send the prompt to Claude and return the generated text."""
        # The SDK retries rate limits with backoff; other errors propagate
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=self.system,
            messages=[
                {"role": "user", "content": self._content(prompt, attachment)}
            ],
        )
        text = "".join(
            block.text for block in (response.content or [])
            if getattr(block, "type", "text") == "text"
        )
        if not text:
            raise BackendError(f"Empty response from Anthropic (model={self.model})")
        return text


class OpenAIBackend:
    """
    Backend using OpenAI's chat completions API.

    Requires: LARDER_OPENAI_API_KEY or OPENAI_API_KEY environment variable.
    Images are sent as ``image_url`` parts carrying a base64 data URL.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 2048,
        system: str | None = None,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIBackend requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens
        self.system = system or EXTRACTION_SYSTEM_PROMPT

        key = api_key or os.environ.get("LARDER_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set LARDER_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)

        # GPT-5+ and reasoning models use max_completion_tokens and no temperature
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self) -> dict:
        if self._new_api:
            return {"max_completion_tokens": self.max_tokens}
        return {"max_tokens": self.max_tokens, "temperature": 0.2}

    @staticmethod
    def _user_content(prompt: str, attachment: Optional[Attachment]):
        if attachment is None:
            return prompt
        if not attachment.is_image:
            return f"{prompt}\n\n{_attachment_text(attachment)}"
        data_url = f"data:{attachment.media_type};base64,{attachment.to_base64()}"
        return [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": data_url}},
        ]

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        """Send the prompt to OpenAI and return the generated text."""
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system},
                {"role": "user", "content": self._user_content(prompt, attachment)},
            ],
            **self._completion_kwargs(),
        )
        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content
        raise BackendError(f"Empty response from OpenAI (model={self.model})")


def ollama_base_url(base_url: str | None = None) -> str:
    """Resolve the Ollama URL: explicit, else OLLAMA_HOST, else localhost."""
    url = base_url or os.environ.get("OLLAMA_HOST") or "http://localhost:11434"
    if not url.startswith(("http://", "https://")):
        url = f"http://{url}"
    return url.rstrip("/")


class OllamaBackend:
    """
    Backend using Ollama's local API.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    Images go in the message's ``images`` list (use a vision model).
    """

    def __init__(
        self,
        model: str = "llama3.2-vision",
        base_url: str | None = None,
        system: str | None = None,
    ):
        self.model = model
        self.base_url = ollama_base_url(base_url)
        self.system = system or EXTRACTION_SYSTEM_PROMPT

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        """Send the prompt to Ollama and return the generated text."""
        import requests

        message: dict = {"role": "user", "content": prompt}
        if attachment is not None:
            if attachment.is_image:
                message["images"] = [attachment.to_base64()]
            else:
                message["content"] = f"{prompt}\n\n{_attachment_text(attachment)}"

        try:
            response = requests.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": [
                        {"role": "system", "content": self.system},
                        message,
                    ],
                    "stream": False,
                },
                timeout=(10, 300),  # (connect, read); generation can be slow
            )
        except requests.RequestException as e:
            raise BackendError(
                f"Cannot reach Ollama at {self.base_url}. "
                "Is Ollama running? Start it with: ollama serve"
            ) from e
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise BackendError(
                f"Ollama generate failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        try:
            return response.json()["message"]["content"].strip()
        except (ValueError, KeyError, TypeError) as e:
            raise BackendError(f"Unexpected Ollama response: {e}") from e


class NoBackend:
    """Placeholder used when no AI provider is configured."""

    def __init__(self, **params):
        pass

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        raise BackendUnavailable(
            "No AI backend configured. Set ANTHROPIC_API_KEY, OPENAI_API_KEY "
            "or LARDER_AI_URL, or edit the [ai] section of larder.toml"
        )


# Register providers
_registry = get_registry()
_registry.register_backend("anthropic", AnthropicBackend)
_registry.register_backend("openai", OpenAIBackend)
_registry.register_backend("ollama", OllamaBackend)
_registry.register_backend("none", NoBackend)
