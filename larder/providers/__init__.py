"""
Generative AI backends.

Concrete backends register themselves with the global ProviderRegistry
when their module is imported; the registry imports them lazily.
"""

from .base import (
    AIBackend,
    Attachment,
    EXTRACTION_SYSTEM_PROMPT,
    ProviderRegistry,
    build_extraction_prompt,
    get_registry,
)

__all__ = [
    "AIBackend",
    "Attachment",
    "EXTRACTION_SYSTEM_PROMPT",
    "ProviderRegistry",
    "build_extraction_prompt",
    "get_registry",
]
