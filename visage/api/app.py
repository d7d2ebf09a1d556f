"""
FastAPI Application - REST API for hosts driving the visage engine.

Endpoints:
    GET    /api/v1/health                          Health + lease holder
    GET    /api/v1/definitions                     List definitions
    POST   /api/v1/definitions                     Create or update a definition
    DELETE /api/v1/definitions/{id}                Soft delete into the bin
    POST   /api/v1/definitions/{id}/restore        Restore from the bin
    POST   /api/v1/entities                        Register an entity in the scene
    GET    /api/v1/entities/{id}                   Live fields + stack
    PATCH  /api/v1/entities/{id}/fields            Operator edit (rebased while masked)
    POST   /api/v1/entities/{id}/attributes        Set an attribute (drives automation)
    POST   /api/v1/entities/{id}/statuses          Add/remove a status (drives automation)
    POST   /api/v1/entities/{id}/apply             Push a definition
    POST   /api/v1/entities/{id}/remove            Remove a layer
    POST   /api/v1/entities/{id}/toggle            Hide/show a layer
    POST   /api/v1/entities/{id}/reorder           Reorder the stack
    POST   /api/v1/entities/{id}/commit            Make a layer the default
    POST   /api/v1/entities/{id}/revert            Restore the base snapshot
    GET    /api/v1/entities/{id}/stack             Current stack

All responses are JSON with explicit Pydantic schemas. Errors use
ErrorResponse with a machine-readable error_code.
"""

from typing import Annotated, Optional, Union

from ..config import VisageConfig


def create_app(service=None, config: Optional[VisageConfig] = None):
    """
    Create the FastAPI application.

    Args:
        service: Optional VisageService instance (creates new if not provided)
        config: Settings; read from the environment when omitted

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import FastAPI, Query
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install fastapi uvicorn"
        )

    from .service import VisageService, VERSION, SERVICE_NAME
    from .schemas import (
        # Request models
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
        # Response models
        DefinitionListResponse,
        DefinitionResponse,
        EntityResponse,
        ErrorResponse,
        HealthResponse,
        StackResponse,
        # Enums
        ERROR_STATUS,
    )
    from ..session.manager import Session

    config = config or VisageConfig.from_env()

    app = FastAPI(
        title="Visage Engine API",
        description="""
Layered appearance overrides for scene entities.

## Error Codes

| Code | Description |
|------|-------------|
| `NOT_FOUND` | Entity or definition does not exist |
| `VALIDATION_ERROR` | Definition failed validation |
| `PERSISTENCE_ERROR` | Store could not be read or written |
| `NOT_AUTHORITATIVE` | Another process holds the authority lease |
| `INTERNAL_ERROR` | Unexpected failure |
        """,
        version=VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_service = service or VisageService(session=Session.build(config))
    app.state.service = api_service

    # =========================================================================
    # Error helpers
    # =========================================================================

    def respond(response):
        """Pass models through; turn ErrorResponse into a JSON error with its status."""
        if isinstance(response, ErrorResponse):
            return JSONResponse(
                status_code=ERROR_STATUS[response.error_code],
                content=response.model_dump(mode="json"),
            )
        return response

    error_responses = {
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    }

    # =========================================================================
    # System
    # =========================================================================

    @app.get(
        "/api/v1/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check, including whether this process holds the lease."""
        return await api_service.health()

    @app.get("/", tags=["System"])
    async def root():
        return {
            "name": "Visage Engine API",
            "service": SERVICE_NAME,
            "version": VERSION,
            "docs": "/api/docs",
            "health": "/api/v1/health",
        }

    # =========================================================================
    # Definition Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/definitions",
        response_model=DefinitionListResponse,
        tags=["Definitions"],
        summary="List definitions visible to an owner",
    )
    async def list_definitions(
        owner_id: Annotated[Optional[str], Query(description="Include this owner's local definitions")] = None,
        include_deleted: Annotated[bool, Query(description="Include binned definitions")] = False,
    ) -> Union[DefinitionListResponse, JSONResponse]:
        return respond(await api_service.list_definitions(owner_id, include_deleted))

    @app.post(
        "/api/v1/definitions",
        response_model=DefinitionResponse,
        responses=error_responses,
        tags=["Definitions"],
        summary="Create or update a definition",
    )
    async def save_definition(request: SaveDefinitionRequest) -> Union[DefinitionResponse, JSONResponse]:
        """
        Save a definition. Supplying `owner_id` makes it local to that owner.

        Disabling a definition's automation removes its layer from every
        entity wearing it.
        """
        return respond(await api_service.save_definition(request))

    @app.delete(
        "/api/v1/definitions/{definition_id}",
        response_model=DefinitionResponse,
        responses=error_responses,
        tags=["Definitions"],
        summary="Move a definition to the bin",
    )
    async def delete_definition(definition_id: str) -> Union[DefinitionResponse, JSONResponse]:
        return respond(await api_service.delete_definition(definition_id))

    @app.post(
        "/api/v1/definitions/{definition_id}/restore",
        response_model=DefinitionResponse,
        responses=error_responses,
        tags=["Definitions"],
        summary="Restore a definition from the bin",
    )
    async def restore_definition(definition_id: str) -> Union[DefinitionResponse, JSONResponse]:
        return respond(await api_service.restore_definition(definition_id))

    # =========================================================================
    # Entity Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/entities",
        response_model=EntityResponse,
        responses=error_responses,
        tags=["Entities"],
        summary="Register an entity in the scene",
    )
    async def register_entity(request: RegisterEntityRequest) -> Union[EntityResponse, JSONResponse]:
        return respond(await api_service.register_entity(request))

    @app.get(
        "/api/v1/entities/{entity_id}",
        response_model=EntityResponse,
        responses=error_responses,
        tags=["Entities"],
        summary="Get live fields and stack",
    )
    async def get_entity(entity_id: str) -> Union[EntityResponse, JSONResponse]:
        return respond(await api_service.get_entity(entity_id))

    @app.patch(
        "/api/v1/entities/{entity_id}/fields",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Entities"],
        summary="Edit visual fields",
    )
    async def edit_fields(entity_id: str, request: EditFieldsRequest) -> Union[StackResponse, JSONResponse]:
        """While overrides are active, the edit is folded into the base snapshot."""
        return respond(await api_service.edit_fields(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/attributes",
        response_model=EntityResponse,
        responses=error_responses,
        tags=["Entities"],
        summary="Set an attribute",
    )
    async def set_attribute(entity_id: str, request: SetAttributeRequest) -> Union[EntityResponse, JSONResponse]:
        return respond(await api_service.set_attribute(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/statuses",
        response_model=EntityResponse,
        responses=error_responses,
        tags=["Entities"],
        summary="Add or remove a status",
    )
    async def set_status(entity_id: str, request: SetStatusRequest) -> Union[EntityResponse, JSONResponse]:
        return respond(await api_service.set_status(entity_id, request))

    # =========================================================================
    # Stack Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/entities/{entity_id}/apply",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Apply a definition",
    )
    async def apply(entity_id: str, request: ApplyRequest) -> Union[StackResponse, JSONResponse]:
        """
        Push a definition onto the entity's stack.

        - `clear_stack`: remove every layer first
        - `switch_identity`: install as the identity at the bottom, keeping overlays
        """
        return respond(await api_service.apply(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/remove",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Remove a layer",
    )
    async def remove(entity_id: str, request: RemoveRequest) -> Union[StackResponse, JSONResponse]:
        return respond(await api_service.remove(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/toggle",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Hide or show a layer",
    )
    async def toggle(entity_id: str, request: ToggleRequest) -> Union[StackResponse, JSONResponse]:
        return respond(await api_service.toggle(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/reorder",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Reorder the stack",
    )
    async def reorder(entity_id: str, request: ReorderRequest) -> Union[StackResponse, JSONResponse]:
        return respond(await api_service.reorder(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/commit",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Make a layer the default appearance",
    )
    async def commit_to_default(entity_id: str, request: CommitRequest) -> Union[StackResponse, JSONResponse]:
        """
        Merge a definition into the entity's default, backing up the old default
        as a local identity definition.
        """
        return respond(await api_service.commit_to_default(entity_id, request))

    @app.post(
        "/api/v1/entities/{entity_id}/revert",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Revert to the base snapshot",
    )
    async def revert(entity_id: str) -> Union[StackResponse, JSONResponse]:
        return respond(await api_service.revert(entity_id))

    @app.get(
        "/api/v1/entities/{entity_id}/stack",
        response_model=StackResponse,
        responses=error_responses,
        tags=["Stack"],
        summary="Get the current stack",
    )
    async def get_stack(entity_id: str) -> Union[StackResponse, JSONResponse]:
        return respond(await api_service.get_stack(entity_id))

    return app
