"""
API Module - HTTP interface for hosts.

Exposes definitions, entities and stack operations via REST. The service
layer is framework-agnostic; create_app() wraps it in FastAPI.
"""

from .schemas import (
    # Requests
    ApplyRequest,
    CommitRequest,
    EditFieldsRequest,
    RegisterEntityRequest,
    RemoveRequest,
    ReorderRequest,
    SaveDefinitionRequest,
    SetAttributeRequest,
    SetStatusRequest,
    ToggleRequest,
    # Responses
    DefinitionListResponse,
    DefinitionResponse,
    EntityResponse,
    ErrorResponse,
    HealthResponse,
    StackResponse,
    # Enums
    ErrorCode,
)
from .service import VisageService
from .app import create_app

__all__ = [
    # Requests
    "ApplyRequest",
    "CommitRequest",
    "EditFieldsRequest",
    "RegisterEntityRequest",
    "RemoveRequest",
    "ReorderRequest",
    "SaveDefinitionRequest",
    "SetAttributeRequest",
    "SetStatusRequest",
    "ToggleRequest",
    # Responses
    "DefinitionListResponse",
    "DefinitionResponse",
    "EntityResponse",
    "ErrorResponse",
    "HealthResponse",
    "StackResponse",
    "ErrorCode",
    # Service
    "VisageService",
    "create_app",
]
