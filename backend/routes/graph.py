"""
Graph Routes

Build, validate and import ComfyUI graph documents, and browse the node
type catalog.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from graph_engine import (
    GenerationContext,
    GraphBuilder,
    GraphConstructionError,
    LegacyImportError,
    analyze_graph,
    get_node_catalog,
    import_api_workflow,
    validate_graph,
)
from graph_engine.node_registry import list_categories

logger = logging.getLogger("graph.routes")

router = APIRouter()


class LoraSpec(BaseModel):
    name: str
    strength: float = 1.0


class ContextSpec(BaseModel):
    style: Optional[str] = None
    quality: str = "standard"
    aspect_ratio: Optional[str] = None


class BuildRequest(BaseModel):
    """Steps plus the resolved model selection."""
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    model: Optional[str] = None
    loras: List[LoraSpec] = Field(default_factory=list)
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    context: Optional[ContextSpec] = None
    fallback: Optional[bool] = None  # None = use builder.fallback_to_minimal


class ValidateRequest(BaseModel):
    workflow: Dict[str, Any]


class ImportRequest(BaseModel):
    workflow: Dict[str, Any]  # API-format map keyed by node id


def _get_builder(request: Request) -> GraphBuilder:
    """Get the graph builder from app state."""
    builder = getattr(request.app.state, "graph_builder", None)
    if not builder:
        raise HTTPException(status_code=500, detail="Graph builder not initialized")
    return builder


def _fallback_enabled(request: Request, requested: Optional[bool]) -> bool:
    if requested is not None:
        return requested
    settings = getattr(request.app.state, "settings", None)
    return bool(settings.get("builder.fallback_to_minimal", True)) if settings else True


# ======================== Node Catalog ========================

@router.get("/nodes")
async def list_nodes(category: Optional[str] = None, search: Optional[str] = None):
    """List node types, optionally filtered by category or search text."""
    nodes = get_node_catalog(category=category, search=search)
    return {"nodes": nodes, "count": len(nodes), "categories": list_categories()}


@router.get("/nodes/{type_name}")
async def get_node(type_name: str):
    """Schema for a single node type."""
    nodes = get_node_catalog()
    if type_name not in nodes:
        raise HTTPException(status_code=404, detail=f"Unknown node type: {type_name}")
    return {"name": type_name, **nodes[type_name]}


# ======================== Build / Validate ========================

@router.post("/build")
async def build_graph(request: Request, body: BuildRequest):
    """
    Build a graph from steps.

    When the result fails validation and fallback is enabled, a minimal
    single-sample graph is built instead and returned with its own
    validation result.
    """
    builder = _get_builder(request)
    context = GenerationContext(**body.context.model_dump()) if body.context else None
    loras = [(lora.name, lora.strength) for lora in body.loras]

    try:
        result = builder.build(
            body.steps,
            model_name=body.model,
            loras=loras,
            context=context,
            prompt=body.prompt,
            negative_prompt=body.negative_prompt,
        )
        validation = validate_graph(result.graph, builder.registry)
        fallback_used = False

        if not validation.is_valid and _fallback_enabled(request, body.fallback):
            logger.warning(f"Built graph invalid ({len(validation.errors)} errors), using minimal graph")
            result = builder.build_minimal(
                model_name=body.model,
                prompt=body.prompt,
                negative_prompt=body.negative_prompt,
                context=context,
            )
            validation = validate_graph(result.graph, builder.registry)
            fallback_used = True
    except GraphConstructionError as e:
        logger.error(f"Graph construction failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        **result.to_dict(),
        "validation": validation.to_dict(),
        "fallback_used": fallback_used,
    }


@router.post("/validate")
async def validate_document(request: Request, body: ValidateRequest):
    builder = _get_builder(request)
    return validate_graph(body.workflow, builder.registry).to_dict()


@router.post("/import")
async def import_workflow(request: Request, body: ImportRequest):
    """Convert an API-format workflow into a graph document."""
    builder = _get_builder(request)
    try:
        graph = import_api_workflow(body.workflow, builder.registry)
    except LegacyImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "workflow": graph.to_dict(),
        "validation": validate_graph(graph, builder.registry).to_dict(),
        "analysis": analyze_graph(graph),
    }
