"""
larder: local-first business records with AI form filling.

Quick start:
    from larder import Workspace

    with Workspace() as ws:
        ws.repository("tasks").create(title="Buy milk")
        print(ws.view("tasks", search="milk").items)
"""

__version__ = "0.1.0"

from .api import Workspace
from .errors import (
    AttachmentError,
    BackendError,
    BackendUnavailable,
    GatewayError,
    LarderError,
    UnsupportedSchemaError,
    ValidationError,
)
from .gateway import AIRequestGateway, GatewayState, RequestHandle
from .interpreter import Raw, Structured
from .repository import EntityRepository
from .types import ALL
from .views import DerivedView, FilterCriteria, RangeFilter, SortSpec, derive_view

__all__ = [
    "ALL",
    "AIRequestGateway",
    "AttachmentError",
    "BackendError",
    "BackendUnavailable",
    "DerivedView",
    "EntityRepository",
    "FilterCriteria",
    "GatewayError",
    "GatewayState",
    "LarderError",
    "RangeFilter",
    "Raw",
    "RequestHandle",
    "SortSpec",
    "Structured",
    "UnsupportedSchemaError",
    "ValidationError",
    "Workspace",
    "derive_view",
]
