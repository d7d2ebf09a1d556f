"""
API Service - Business logic layer between the HTTP API and the engine.

The service:
1. Translates API requests to engine calls
2. Owns the session (store, scene, library, automation, lease)
3. Turns engine errors into structured ErrorResponses

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import functools
import logging

from .schemas import (
    # Requests
    ApplyRequest,
    EditFieldsRequest,
    RegisterEntityRequest,
    CommitRequest,
    RemoveRequest,
    ReorderRequest,
    SaveDefinitionRequest,
    SetAttributeRequest,
    SetStatusRequest,
    ToggleRequest,
    # Responses
    DefinitionInfo,
    DefinitionListResponse,
    DefinitionResponse,
    EntityResponse,
    ErrorResponse,
    HealthResponse,
    StackResponse,
    # Shared
    LayerInfo,
    VisualStateInfo,
    # Enums
    ErrorCode,
)
from ..definitions.definition import VisageDefinition
from ..definitions.validation import validate_definition
from ..engine_core.errors import (
    DefinitionValidationError,
    NotAuthoritative,
    NotFound,
    PersistenceFailure,
    ValidationFailure,
    VisageError,
)
from ..engine_core.stack import StackResult
from ..engine_core.state import Layer, VisualState
from ..session.manager import Session

logger = logging.getLogger(__name__)

SERVICE_NAME = "visage-engine"
VERSION = "1.0.0"


def error_response(error: VisageError) -> ErrorResponse:
    """Convert an engine exception to a structured error."""
    details: dict[str, Any] | None = None
    if isinstance(error, DefinitionValidationError):
        details = {"errors": error.errors}
    elif isinstance(error, ValidationFailure):
        details = {"field": error.field, "reason": error.reason}
    elif isinstance(error, PersistenceFailure):
        details = {"operation": error.operation, "identifier": error.identifier}
    elif isinstance(error, NotAuthoritative):
        details = {"holder_id": error.current_holder}
    elif isinstance(error, NotFound):
        details = {"kind": error.kind, "identifier": error.identifier}
    return ErrorResponse(error=str(error), error_code=ErrorCode(error.error_code), details=details)


def _handles_errors(method):
    """Return engine errors as ErrorResponse instead of raising them."""
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except VisageError as e:
            logger.warning("%s failed: %s", method.__name__, e)
            return error_response(e)
    return wrapper


def _parse_fields(data: dict[str, Any]) -> VisualState:
    try:
        return VisualState.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationFailure("fields", str(e)) from e


def visual_info(state: VisualState) -> VisualStateInfo:
    return VisualStateInfo.model_validate(state.to_dict())


def layer_info(layer: Layer) -> LayerInfo:
    return LayerInfo.model_validate(layer.to_dict())


def definition_info(definition: VisageDefinition) -> DefinitionInfo:
    return DefinitionInfo.model_validate(definition.to_dict())


@dataclass
class VisageService:
    """
    Main API service.

    Usage:
        service = VisageService()
        await service.register_entity(RegisterEntityRequest(entity_id="token-1"))
        response = await service.apply("token-1", ApplyRequest(definition_id="wolf"))
    """
    session: Session = field(default_factory=Session.build)
    _started: bool = False

    async def ensure_started(self) -> bool:
        """Start the session on first use, renew the lease afterwards."""
        if not self._started:
            self._started = True
            return await self.session.start()
        if self.session.heartbeat():
            return True
        # Lease expired or was never ours: try to take it (again)
        return await self.session.start()

    # =========================================================================
    # System
    # =========================================================================

    async def health(self) -> HealthResponse:
        await self.ensure_started()
        return HealthResponse(
            status="healthy",
            service=SERVICE_NAME,
            version=VERSION,
            authoritative=self.session.is_authoritative,
            holder_id=self.session.lease.holder,
        )

    # =========================================================================
    # Definitions
    # =========================================================================

    @_handles_errors
    async def list_definitions(
        self,
        owner_id: str | None = None,
        include_deleted: bool = False,
    ) -> DefinitionListResponse:
        await self.ensure_started()
        definitions = await self.session.library.list(owner_id, include_deleted=include_deleted)
        return DefinitionListResponse(
            definitions=[definition_info(d) for d in definitions],
            count=len(definitions),
        )

    @_handles_errors
    async def save_definition(self, request: SaveDefinitionRequest) -> DefinitionResponse:
        await self.ensure_started()
        payload = request.model_dump(mode="json", exclude_none=True)
        owner_id = payload.pop("owner_id", None)
        definition = await self.session.library.save(payload, owner_id=owner_id)
        return DefinitionResponse(
            definition=definition_info(definition),
            warnings=validate_definition(definition).warnings,
        )

    @_handles_errors
    async def delete_definition(self, definition_id: str) -> DefinitionResponse:
        await self.ensure_started()
        definition = await self.session.library.delete(definition_id)
        return DefinitionResponse(definition=definition_info(definition))

    @_handles_errors
    async def restore_definition(self, definition_id: str) -> DefinitionResponse:
        await self.ensure_started()
        definition = await self.session.library.restore(definition_id)
        return DefinitionResponse(definition=definition_info(definition))

    # =========================================================================
    # Entities
    # =========================================================================

    @_handles_errors
    async def register_entity(self, request: RegisterEntityRequest) -> EntityResponse:
        await self.ensure_started()
        await self.session.scene.add_entity(
            request.entity_id,
            fields=_parse_fields(request.fields),
            owner_id=request.owner_id,
            attributes=request.attributes,
            statuses=set(request.statuses),
        )
        return await self.get_entity(request.entity_id)

    @_handles_errors
    async def get_entity(self, entity_id: str) -> EntityResponse:
        await self.ensure_started()
        fields = await self.session.scene.read_live_fields(entity_id)
        if fields is None:
            raise NotFound("entity", entity_id)
        stack = await self.session.stack_ops.get_stack(entity_id)
        return EntityResponse(
            entity_id=entity_id,
            owner_id=await self.session.scene.owner_of(entity_id),
            fields=visual_info(fields),
            stack=[layer_info(layer) for layer in stack],
        )

    @_handles_errors
    async def edit_fields(self, entity_id: str, request: EditFieldsRequest) -> StackResponse:
        await self.ensure_started()
        _parse_fields(request.edits)
        return self._stack_response(await self.session.operator_edit(entity_id, request.edits))

    @_handles_errors
    async def set_attribute(self, entity_id: str, request: SetAttributeRequest) -> EntityResponse:
        await self.ensure_started()
        self._require_entity(entity_id)
        await self.session.scene.set_attribute(entity_id, request.path, request.value)
        return await self.get_entity(entity_id)

    @_handles_errors
    async def set_status(self, entity_id: str, request: SetStatusRequest) -> EntityResponse:
        await self.ensure_started()
        self._require_entity(entity_id)
        if request.active:
            await self.session.scene.add_status(entity_id, request.status_id)
        else:
            await self.session.scene.remove_status(entity_id, request.status_id)
        return await self.get_entity(entity_id)

    # =========================================================================
    # Stack
    # =========================================================================

    @_handles_errors
    async def apply(self, entity_id: str, request: ApplyRequest) -> StackResponse:
        await self.ensure_started()
        result = await self.session.stack_ops.apply(
            entity_id,
            request.definition_id,
            clear_stack=request.clear_stack,
            switch_identity=request.switch_identity,
        )
        return self._stack_response(result)

    @_handles_errors
    async def remove(self, entity_id: str, request: RemoveRequest) -> StackResponse:
        await self.ensure_started()
        return self._stack_response(
            await self.session.stack_ops.remove(entity_id, request.definition_id)
        )

    @_handles_errors
    async def toggle(self, entity_id: str, request: ToggleRequest) -> StackResponse:
        await self.ensure_started()
        return self._stack_response(
            await self.session.stack_ops.toggle_layer_visibility(
                entity_id, request.definition_id, disabled=request.disabled
            )
        )

    @_handles_errors
    async def reorder(self, entity_id: str, request: ReorderRequest) -> StackResponse:
        await self.ensure_started()
        return self._stack_response(
            await self.session.stack_ops.reorder_stack(entity_id, request.ordered_ids)
        )

    @_handles_errors
    async def commit_to_default(self, entity_id: str, request: CommitRequest) -> StackResponse:
        await self.ensure_started()
        return self._stack_response(
            await self.session.stack_ops.commit_to_default(entity_id, request.definition_id)
        )

    @_handles_errors
    async def revert(self, entity_id: str) -> StackResponse:
        await self.ensure_started()
        return self._stack_response(await self.session.stack_ops.revert(entity_id))

    @_handles_errors
    async def get_stack(self, entity_id: str) -> StackResponse:
        await self.ensure_started()
        self._require_entity(entity_id)
        stack = await self.session.stack_ops.get_stack(entity_id)
        return StackResponse(
            entity_id=entity_id,
            resolved=visual_info(await self.session.scene.read_live_fields(entity_id)),
            stack=[layer_info(layer) for layer in stack],
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_entity(self, entity_id: str):
        if entity_id not in self.session.scene:
            raise NotFound("entity", entity_id)

    @staticmethod
    def _stack_response(result: StackResult) -> StackResponse | ErrorResponse:
        if not result.success:
            return ErrorResponse(
                error=result.error or "Operation failed",
                error_code=ErrorCode(result.error_code or ErrorCode.INTERNAL_ERROR.value),
            )
        return StackResponse(
            success=True,
            entity_id=result.entity_id,
            changed=result.changed,
            resolved=visual_info(result.resolved) if result.resolved is not None else None,
            stack=[layer_info(layer) for layer in result.stack],
        )
