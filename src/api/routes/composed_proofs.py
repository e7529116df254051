"""
ZK-PRET Composed Proofs API
===========================

FastAPI endpoints for composed proof templates, executions and the proof cache.

Endpoints:
- GET  /composed-proofs/templates: List templates (optional category filter)
- GET  /composed-proofs/templates/{template_id}: Get one template
- POST /composed-proofs/templates: Register a template
- POST /composed-proofs/execute: Run a composed proof to completion
- POST /composed-proofs/executions: Start a composed proof in the background
- GET  /composed-proofs/status/{execution_id}: Progress of an execution
- GET  /composed-proofs/results/{execution_id}: Final result of an execution
- POST /composed-proofs/executions/{execution_id}/cancel: Request cancellation
- GET  /composed-proofs/cache/stats: Cache statistics
- POST /composed-proofs/cache/clear: Clear the cache

Version: 1.0.0
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.composed_proofs import (
    ComposedProofRequest,
    ComposedProofResult,
    ComposedProofService,
    CompositionTemplate,
    ExecutionStatus,
    ProgressReport,
    get_composed_proof_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/composed-proofs",
    tags=["Composed Proofs"],
    responses={
        400: {"description": "Invalid template or request"},
        404: {"description": "Template or execution not found"},
        500: {"description": "Internal server error"},
    },
)


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class TemplateListResponse(BaseModel):
    templates: List[CompositionTemplate]
    total: int
    categories: List[str] = Field(default_factory=list)


class ExecutionAcceptedResponse(BaseModel):
    """Returned when an execution is started in the background."""

    execution_id: str
    status: ExecutionStatus
    status_url: str
    result_url: str


class CancelResponse(BaseModel):
    execution_id: str
    cancelled: bool
    status: ExecutionStatus


class CacheStatsResponse(BaseModel):
    size: int
    hits: int
    lookup_hits: int
    lookup_misses: int
    entries: List[Dict[str, Any]] = Field(default_factory=list)


class MessageResponse(BaseModel):
    message: str
    timestamp: datetime


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_service() -> ComposedProofService:
    return get_composed_proof_service()


# =============================================================================
# TEMPLATE ENDPOINTS
# =============================================================================


@router.get("/templates", response_model=TemplateListResponse)
async def list_templates(
    category: Optional[str] = Query(None, description="Filter by template category"),
    service: ComposedProofService = Depends(get_service),
) -> TemplateListResponse:
    """List the latest version of every registered template."""
    templates = service.get_templates(category)
    return TemplateListResponse(
        templates=templates,
        total=len(templates),
        categories=service.registry.categories(),
    )


@router.get("/templates/{template_id}", response_model=CompositionTemplate)
async def get_template(
    template_id: str,
    version: Optional[str] = Query(None, description="Template version (latest if omitted)"),
    service: ComposedProofService = Depends(get_service),
) -> CompositionTemplate:
    return service.get_template(template_id, version)


@router.post(
    "/templates", response_model=CompositionTemplate, status_code=status.HTTP_201_CREATED
)
async def create_template(
    template: CompositionTemplate,
    service: ComposedProofService = Depends(get_service),
) -> CompositionTemplate:
    """
    Register a new template.

    The (id, version) pair must be new; registered templates are immutable.
    """
    registered = service.add_template(template)
    logger.info(f"Template {registered.id}@{registered.version} registered via API")
    return registered


# =============================================================================
# EXECUTION ENDPOINTS
# =============================================================================


@router.post("/execute", response_model=ComposedProofResult)
async def execute_composed_proof(
    request: ComposedProofRequest,
    service: ComposedProofService = Depends(get_service),
) -> ComposedProofResult:
    """Run a composed proof and wait for its final result."""
    return await service.execute(request)


@router.post(
    "/executions",
    response_model=ExecutionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_composed_proof(
    request: ComposedProofRequest,
    service: ComposedProofService = Depends(get_service),
) -> ExecutionAcceptedResponse:
    """Start a composed proof in the background and return where to poll."""
    execution_id = await service.start_execution(request)
    execution = service.get_execution(execution_id)
    return ExecutionAcceptedResponse(
        execution_id=execution_id,
        status=execution.status,
        status_url=f"{router.prefix}/status/{execution_id}",
        result_url=f"{router.prefix}/results/{execution_id}",
    )


@router.get("/status/{execution_id}", response_model=ProgressReport)
async def get_execution_status(
    execution_id: str,
    include_partial: bool = Query(True, description="Include settled component results"),
    service: ComposedProofService = Depends(get_service),
) -> ProgressReport:
    return service.get_progress(execution_id, include_partial=include_partial)


@router.get("/results/{execution_id}", response_model=ComposedProofResult)
async def get_execution_result(
    execution_id: str,
    service: ComposedProofService = Depends(get_service),
):
    """Final result, or 202 with the current progress while still running."""
    result = service.get_result(execution_id)
    if result is None:
        progress = service.get_progress(execution_id, include_partial=False)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED, content=progress.model_dump(mode="json")
        )
    return result


@router.post("/executions/{execution_id}/cancel", response_model=CancelResponse)
async def cancel_execution(
    execution_id: str,
    service: ComposedProofService = Depends(get_service),
) -> CancelResponse:
    cancelled = service.cancel_execution(execution_id)
    execution = service.get_execution(execution_id)
    return CancelResponse(execution_id=execution_id, cancelled=cancelled, status=execution.status)


# =============================================================================
# CACHE ENDPOINTS
# =============================================================================


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(
    service: ComposedProofService = Depends(get_service),
) -> CacheStatsResponse:
    return CacheStatsResponse(**service.get_cache_stats())


@router.post("/cache/clear", response_model=MessageResponse)
async def clear_cache(
    service: ComposedProofService = Depends(get_service),
) -> MessageResponse:
    service.clear_cache()
    return MessageResponse(
        message="Cache cleared successfully", timestamp=datetime.now(timezone.utc)
    )
