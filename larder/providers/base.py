"""
Base provider protocols.

These define the interfaces that generative backends must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

import base64
import json
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from ..errors import AttachmentError


# -----------------------------------------------------------------------------
# Attachments
# -----------------------------------------------------------------------------

# Media types for the picture formats the backends accept, by extension
EXTENSION_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
}


@dataclass(frozen=True)
class Attachment:
    """
    Binary context sent alongside a prompt (e.g. a receipt photo).

    Attributes:
        data: Raw bytes as supplied by the file picker
        filename: Original file name, used to guess the media type
        content_type: MIME type if known
    """
    data: bytes
    filename: str = ""
    content_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: str | Path) -> "Attachment":
        """Read an attachment from a local file."""
        path = Path(path).expanduser()
        if not path.is_file():
            raise AttachmentError(f"Not a file: {path}")
        return cls(data=path.read_bytes(), filename=path.name)

    @property
    def size(self) -> int:
        return len(self.data) if isinstance(self.data, (bytes, bytearray)) else 0

    @property
    def media_type(self) -> str:
        """Declared content type, else a guess from the filename."""
        if self.content_type:
            return self.content_type
        suffix = Path(self.filename).suffix.lower()
        if suffix in EXTENSION_TYPES:
            return EXTENSION_TYPES[suffix]
        guessed, _ = mimetypes.guess_type(self.filename)
        return guessed or "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def validate(self, max_bytes: Optional[int] = None) -> None:
        """
        Check the attachment is usable.

        Raises:
            AttachmentError: If data is not bytes, is empty, or exceeds max_bytes
        """
        if not isinstance(self.data, (bytes, bytearray)):
            raise AttachmentError(
                f"Attachment data must be bytes, got {type(self.data).__name__}"
            )
        if not self.data:
            raise AttachmentError(f"Attachment {self.filename or '(unnamed)'} is empty")
        if max_bytes is not None and len(self.data) > max_bytes:
            raise AttachmentError(
                f"Attachment too large: {len(self.data):,} bytes "
                f"(limit: {max_bytes:,} bytes)"
            )


# -----------------------------------------------------------------------------
# Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class AIBackend(Protocol):
    """
    Generates text from a prompt and an optional attachment.

    Backends are synchronous; the gateway runs them in an executor.
    A backend may also define a coroutine ``agenerate`` with the same
    signature, which the gateway awaits directly instead.

    Example implementation:
        class EchoBackend:
            def generate(self, prompt, attachment=None):
                return prompt
    """

    def generate(self, prompt: str, attachment: Optional[Attachment] = None) -> str:
        """
        Send the prompt (and attachment, if any) and return the raw text.

        Raises:
            BackendUnavailable: If no backend is configured
            BackendError: If the backend fails or returns nothing
        """
        ...


# Shared system prompt for form pre-fill requests
EXTRACTION_SYSTEM_PROMPT = """You extract structured data for a business form.

Reply with a single JSON object using exactly the keys requested. Use null for values you cannot determine. Do not wrap the JSON in commentary.

If an image is attached, read the values from the image."""


def build_extraction_prompt(schema: Mapping[str, Any], text: str = "") -> str:
    """
    Build the user prompt for a form pre-fill request.

    Args:
        schema: Example JSON shape, key -> description of the expected value
        text: Free text to analyze (may be empty when an image carries the content)

    Returns:
        Prompt embedding the requested JSON shape
    """
    shape = json.dumps(dict(schema), indent=2)
    prompt = f"Return a JSON object with this shape:\n{shape}\n"
    if text:
        prompt += f"\nAnalyze the following:\n{text}"
    else:
        prompt += "\nAnalyze the attached file."
    return prompt


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating generative backends.

    Backends are registered by name and instantiated from configuration.
    This allows larder.toml to name the backend rather than requiring
    code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_backend("anthropic", AnthropicBackend)

        # Later, from config:
        backend = registry.create_backend("anthropic", {"model": "claude-haiku-4-5"})
    """

    def __init__(self):
        self._backends: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load the provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Importing registers the classes; SDKs are imported on instantiation
        from . import llm  # noqa: F401
        from . import remote  # noqa: F401

    def register_backend(self, name: str, backend_class: type) -> None:
        """Register a backend class."""
        self._backends[name] = backend_class

    def create_backend(self, name: str, params: Optional[dict] = None) -> AIBackend:
        """Create a backend instance."""
        self._ensure_providers_loaded()
        if name not in self._backends:
            available = ", ".join(self._backends.keys()) or "none"
            raise ValueError(
                f"Unknown AI backend: '{name}'. "
                f"Available backends: {available}. "
                f"Install missing dependencies or check the backend name."
            )
        try:
            return self._backends[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create AI backend '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except (ValueError, RuntimeError):
            raise
        except Exception as e:
            raise RuntimeError(f"Failed to create AI backend '{name}': {e}") from e

    def list_backends(self) -> list[str]:
        """List registered backend names."""
        self._ensure_providers_loaded()
        return list(self._backends.keys())


# Global registry instance
# Concrete backends register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
