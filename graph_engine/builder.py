"""
Graph Builder

Top-level build operation: steps + resolved model/LoRA selection in, graph
document + explanation out. Every call gets a fresh allocator, factory,
signal chain and dispatcher, so one builder can serve concurrent requests.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .assembler import assemble_graph
from .dispatcher import DispatchOptions, StepDispatcher, with_overrides
from .graph_types import Graph, WorkflowExplanation
from .ids import IdAllocator
from .interfaces import ModelRecommender, StepResolver
from .model_defaults import GenerationContext
from .node_factory import NodeFactory
from .node_registry import DEFAULT_REGISTRY, NodeTypeRegistry
from .signal_chain import SignalChain
from .steps import SampleStep

logger = logging.getLogger("graph_engine.builder")


@dataclass
class BuildResult:
    graph: Graph
    explanation: WorkflowExplanation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow": self.graph.to_dict(),
            "explanation": self.explanation.to_dict(),
        }


class GraphBuilder:
    """Builds graph documents from intent steps."""

    def __init__(
        self,
        registry: Optional[NodeTypeRegistry] = None,
        options: Optional[DispatchOptions] = None,
    ):
        self.registry = registry or DEFAULT_REGISTRY
        self.options = options or DispatchOptions()

    @classmethod
    def from_settings(cls, settings_manager, registry: Optional[NodeTypeRegistry] = None) -> "GraphBuilder":
        """Create a builder whose fallbacks come from the `builder` settings section."""
        get = settings_manager.get
        defaults = DispatchOptions()
        options = DispatchOptions(
            checkpoint=get("builder.default_checkpoint", defaults.checkpoint),
            negative_prompt=get("builder.default_negative_prompt", defaults.negative_prompt),
            reference_image=get("builder.default_reference_image", defaults.reference_image),
            upscale_model=get("builder.default_upscale_model", defaults.upscale_model),
            controlnet_template=get("builder.default_controlnet_template", defaults.controlnet_template),
            add_save_node=bool(get("builder.add_save_node", defaults.add_save_node)),
            filename_prefix=get("builder.filename_prefix", defaults.filename_prefix),
        )
        return cls(registry=registry, options=options)

    def build(
        self,
        steps: Optional[Iterable[Any]],
        model_name: Optional[str] = None,
        loras: Optional[Sequence[Any]] = None,
        context: Optional[GenerationContext] = None,
        prompt: Optional[str] = None,
        negative_prompt: Optional[str] = None,
    ) -> BuildResult:
        """
        Build a graph from an ordered step list.

        Malformed step content is repaired or dropped; only internal
        construction errors (GraphConstructionError) propagate. The result
        is not validated here, call validate_graph() on it.
        """
        options = with_overrides(
            self.options,
            checkpoint=model_name,
            prompt=prompt,
            negative_prompt=negative_prompt,
        )
        allocator = IdAllocator()
        factory = NodeFactory(allocator=allocator, registry=self.registry)
        dispatcher = StepDispatcher(factory, SignalChain(), options, context)

        dispatcher.dispatch_all(steps or [], loras=loras or ())

        graph = assemble_graph(factory.nodes, factory.edges, allocator)
        explanation = WorkflowExplanation(
            title="ComfyUI Workflow",
            steps=dispatcher.explanation,
            summary=f"Generated workflow with {len(graph.nodes)} nodes to create: {dispatcher.prompt}",
        )
        logger.info(
            f"Built graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges "
            f"(checkpoint={dispatcher.checkpoint_name})"
        )
        return BuildResult(graph=graph, explanation=explanation)

    def build_from_description(
        self,
        description: str,
        resolver: StepResolver,
        recommender: Optional[ModelRecommender] = None,
        context: Optional[GenerationContext] = None,
    ) -> BuildResult:
        """Resolve steps (and optionally models) for a text description, then build."""
        steps = resolver.resolve_steps(description)
        model_name = None
        loras: List[Tuple[str, float]] = []
        if recommender is not None:
            keywords = [w for w in re.findall(r"[a-z0-9]+", description.lower()) if len(w) > 2]
            style = context.style if context else None
            model_name = recommender.select_model(keywords, style)
            loras = list(recommender.select_loras(keywords, style) or [])

        return self.build(
            steps,
            model_name=model_name,
            loras=loras,
            context=context,
            prompt=description,
        )

    def build_minimal(
        self,
        model_name: Optional[str] = None,
        prompt: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        context: Optional[GenerationContext] = None,
    ) -> BuildResult:
        """Fallback graph: load, encode, a single default sample step, preview."""
        return self.build(
            [SampleStep()],
            model_name=model_name,
            context=context,
            prompt=prompt,
            negative_prompt=negative_prompt,
        )
