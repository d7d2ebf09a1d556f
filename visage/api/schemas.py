"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the contract between host clients and the engine.

Error Codes:
- NOT_FOUND: Entity or definition does not exist
- VALIDATION_ERROR: Request or definition failed validation
- PERSISTENCE_ERROR: The store could not be read or written
- NOT_AUTHORITATIVE: This process does not hold the authority lease
- INTERNAL_ERROR: Anything else
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class ErrorCode(str, Enum):
    """Structured error codes."""
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    NOT_AUTHORITATIVE = "NOT_AUTHORITATIVE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LayerModeValue(str, Enum):
    IDENTITY = "identity"
    OVERLAY = "overlay"


class DefinitionScopeValue(str, Enum):
    LOCAL = "local"
    GLOBAL = "global"


# HTTP status for each error code
ERROR_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.PERSISTENCE_ERROR: 503,
    ErrorCode.NOT_AUTHORITATIVE: 409,
    ErrorCode.INTERNAL_ERROR: 500,
}


# =============================================================================
# Shared Models
# =============================================================================

class TextureInfo(BaseModel):
    """Texture with signed scales (negative = mirrored)."""
    src: Optional[str] = None
    scaleX: float = 1.0
    scaleY: float = 1.0


class RingInfo(BaseModel):
    enabled: bool = False
    colors: Optional[dict[str, Optional[str]]] = None
    effects: int = Field(0, description="Bitmask: 2 pulse, 4 gradient, 8 wave, 16 invisibility")
    subject: Optional[dict[str, Any]] = None


class VisualStateInfo(BaseModel):
    """Managed visual fields of an entity."""
    display_name: Optional[str] = None
    disposition: int = Field(0, description="-2 secret, -1 hostile, 0 neutral, 1 friendly")
    texture: TextureInfo = Field(default_factory=TextureInfo)
    width: Optional[float] = None
    height: Optional[float] = None
    ring: Optional[RingInfo] = None


class LayerInfo(BaseModel):
    """One layer of an override stack, bottom first."""
    definition_id: str
    label: str = ""
    mode: LayerModeValue
    disabled: bool = False
    changeset: dict[str, Any] = Field(default_factory=dict)


class DefinitionInfo(BaseModel):
    """A stored visage definition."""
    id: str
    label: str
    mode: LayerModeValue
    scope: DefinitionScopeValue
    owner_id: Optional[str] = None
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    changeset: dict[str, Any] = Field(default_factory=dict)
    automation: Optional[dict[str, Any]] = None
    created: float = 0.0
    updated: float = 0.0
    deleted: bool = False
    deleted_at: Optional[float] = None


# =============================================================================
# Request Models
# =============================================================================

class SaveDefinitionRequest(BaseModel):
    """Create or update a definition. Supplying owner_id makes it local."""
    id: Optional[str] = Field(None, description="Omit to create a new definition")
    label: str = Field(..., min_length=1)
    mode: Optional[LayerModeValue] = Field(None, description="Defaults by scope")
    owner_id: Optional[str] = None
    category: str = ""
    tags: list[str] = Field(default_factory=list)
    changeset: dict[str, Any] = Field(default_factory=dict)
    automation: Optional[dict[str, Any]] = None


class RegisterEntityRequest(BaseModel):
    entity_id: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    statuses: list[str] = Field(default_factory=list)


class EditFieldsRequest(BaseModel):
    """Manual edit of visual fields by an operator."""
    edits: dict[str, Any]


class SetAttributeRequest(BaseModel):
    path: str = Field(..., description="Dotted path, e.g. hp.value")
    value: Any = None


class SetStatusRequest(BaseModel):
    status_id: str
    active: bool = True


class ApplyRequest(BaseModel):
    definition_id: str
    clear_stack: bool = Field(False, description="Empty the stack first")
    switch_identity: bool = Field(False, description="Install as identity at the bottom")


class RemoveRequest(BaseModel):
    definition_id: str


class CommitRequest(BaseModel):
    """Bake a definition into the entity's default appearance."""
    definition_id: str


class ToggleRequest(BaseModel):
    definition_id: str
    disabled: Optional[bool] = Field(None, description="Omit to flip")


class ReorderRequest(BaseModel):
    ordered_ids: list[str] = Field(..., description="Bottom to top")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class StackResponse(BaseModel):
    """Outcome of a stack operation, or the current stack."""
    success: bool = True
    entity_id: str
    changed: bool = False
    resolved: Optional[VisualStateInfo] = None
    stack: list[LayerInfo] = Field(default_factory=list)
    api_version: str = "v1"


class EntityResponse(BaseModel):
    entity_id: str
    owner_id: Optional[str] = None
    fields: VisualStateInfo
    stack: list[LayerInfo] = Field(default_factory=list)
    api_version: str = "v1"


class DefinitionResponse(BaseModel):
    definition: DefinitionInfo
    warnings: list[str] = Field(default_factory=list)
    api_version: str = "v1"


class DefinitionListResponse(BaseModel):
    definitions: list[DefinitionInfo]
    count: int
    api_version: str = "v1"


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    authoritative: bool = False
    holder_id: Optional[str] = None
