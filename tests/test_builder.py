"""
End-to-end tests for graph building: dispatch order, signal threading,
id/counter invariants and explanation output.
"""

import sys
import os
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from graph_engine import GraphBuilder, validate_graph
from graph_engine.dispatcher import DispatchOptions, StepDispatcher, canonical_order, upscale_model_factor
from graph_engine.graph_types import Handle
from graph_engine.model_defaults import GenerationContext
from graph_engine.node_factory import NodeFactory
from graph_engine.steps import EffectStep, SampleStep, UpscaleStep, parse_steps


FOX_STEPS = [
    {"action": "load"},
    {"action": "encode", "prompt": "a fox"},
    {"action": "sample", "steps": 25, "guidanceScale": 7.5, "sampler": "euler"},
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def types_of(graph):
    return [n.type for n in graph.nodes]


def only(graph, type_name):
    nodes = graph.nodes_of_type(type_name)
    assert len(nodes) == 1, f"expected one {type_name}, got {len(nodes)}"
    return nodes[0]


def source_node(graph, node, input_name):
    handle = graph.source_of(node.id, input_name)
    return graph.get_node(handle.node_id) if handle else None


class TestExampleScenario(unittest.TestCase):
    """load + encode + sample produces the standard seven-node graph."""

    def setUp(self):
        self.result = GraphBuilder().build(FOX_STEPS)
        self.graph = self.result.graph

    def test_node_types(self):
        self.assertEqual(types_of(self.graph), [
            "CheckpointLoaderSimple", "CLIPTextEncode", "CLIPTextEncode",
            "EmptyLatentImage", "KSampler", "VAEDecode", "PreviewImage",
        ])
        self.assertEqual(self.graph.last_node_id, 7)

    def test_sampler_literals(self):
        sampler = only(self.graph, "KSampler")
        seed, steps, cfg, sampler_name, scheduler, denoise = sampler.widgets_values
        self.assertIsInstance(seed, int)
        self.assertEqual((steps, cfg, sampler_name), (25, 7.5, "euler"))
        self.assertEqual(scheduler, "karras")
        self.assertEqual(denoise, 1.0)

    def test_prompts(self):
        pos, neg = self.graph.nodes_of_type("CLIPTextEncode")
        self.assertEqual(pos.widgets_values, ["a fox"])
        self.assertEqual(neg.widgets_values, ["blurry, low quality, distorted"])

    def test_fully_connected(self):
        sampler = only(self.graph, "KSampler")
        self.assertEqual(source_node(self.graph, sampler, "model").type, "CheckpointLoaderSimple")
        self.assertEqual(source_node(self.graph, sampler, "latent_image").type, "EmptyLatentImage")
        decode = only(self.graph, "VAEDecode")
        self.assertEqual(source_node(self.graph, decode, "samples").id, sampler.id)
        self.assertEqual(self.graph.source_of(decode.id, "vae"), Handle(1, 2))
        preview = only(self.graph, "PreviewImage")
        self.assertEqual(source_node(self.graph, preview, "images").id, decode.id)
        self.assertEqual(len(self.graph.edges), 9)

    def test_valid(self):
        validation = validate_graph(self.graph)
        self.assertTrue(validation.is_valid, validation.errors)

    def test_document_shape(self):
        doc = self.graph.to_dict()
        self.assertEqual(doc["version"], 1)
        self.assertEqual(doc["state"], {"lastNodeId": 7, "lastEdgeId": 9})
        self.assertEqual((doc["groups"], doc["config"], doc["extra"]), ([], {}, {}))

    def test_explanation(self):
        explanation = self.result.explanation.to_dict()
        descriptions = [s["description"] for s in explanation["steps"]]
        self.assertTrue(descriptions[0].startswith("Load checkpoint model"))
        self.assertEqual(descriptions[-1], "Preview final image")
        self.assertEqual([s["step"] for s in explanation["steps"]], list(range(1, len(descriptions) + 1)))
        self.assertIn("a fox", explanation["summary"])


class TestInvariants(unittest.TestCase):

    SEQUENCES = [
        [],
        FOX_STEPS,
        [{"action": "lora", "name": "detail"}, {"action": "generate"}, {"action": "upscale"}],
        [{"action": "sample"}, {"action": "controlnet", "image": "pose.png", "type": "openpose"},
         {"action": "effect", "strength": 0.3}, {"action": "upscale", "method": "model"}],
        [{"action": "sample"}, {"action": "sample", "steps": 10}, {"action": "effect"}],
    ]

    def test_ids_strictly_increasing_from_one(self):
        for steps in self.SEQUENCES:
            graph = GraphBuilder().build(steps).graph
            node_ids = [n.id for n in graph.nodes]
            edge_ids = [e.id for e in graph.edges]
            self.assertEqual(node_ids, list(range(1, len(node_ids) + 1)), steps)
            self.assertEqual(edge_ids, list(range(1, len(edge_ids) + 1)), steps)

    def test_counters_match_max_ids(self):
        for steps in self.SEQUENCES:
            graph = GraphBuilder().build(steps).graph
            self.assertEqual(graph.last_node_id, max(n.id for n in graph.nodes))
            self.assertEqual(graph.last_edge_id, max(e.id for e in graph.edges))

    def test_backfill_complete(self):
        for steps in self.SEQUENCES:
            graph = GraphBuilder().build(steps).graph
            for edge in graph.edges:
                origin = graph.get_node(edge.origin_id)
                self.assertIn(edge.id, origin.outputs[edge.origin_slot].links)
            listed = sorted(l for n in graph.nodes for o in n.outputs for l in o.links)
            self.assertEqual(listed, sorted(e.id for e in graph.edges))

    def test_all_sequences_validate(self):
        for steps in self.SEQUENCES:
            validation = validate_graph(GraphBuilder().build(steps).graph)
            self.assertTrue(validation.is_valid, (steps, validation.errors))

    def test_repeated_builds_restart_ids(self):
        builder = GraphBuilder()
        first = builder.build(FOX_STEPS).graph
        second = builder.build(FOX_STEPS).graph
        self.assertEqual([n.id for n in first.nodes], [n.id for n in second.nodes])
        self.assertEqual(second.nodes[0].id, 1)


class TestDispatchBehaviour(unittest.TestCase):

    def test_empty_steps_still_produce_image(self):
        graph = GraphBuilder().build([]).graph
        self.assertEqual(types_of(graph), [
            "CheckpointLoaderSimple", "CLIPTextEncode", "CLIPTextEncode",
            "EmptyLatentImage", "KSampler", "VAEDecode", "PreviewImage",
        ])

    def test_style_adjust_rederives_conditioning(self):
        graph = GraphBuilder().build([
            {"action": "style_adjust", "name": "detail_tweaker", "strength": 0.6},
            {"action": "sample"},
        ]).graph
        lora = only(graph, "LoraLoader")
        sampler = only(graph, "KSampler")

        self.assertEqual(graph.source_of(sampler.id, "model"), Handle(lora.id, 0))
        for name in ("positive", "negative"):
            encoder = source_node(graph, sampler, name)
            self.assertEqual(encoder.type, "CLIPTextEncode")
            self.assertEqual(graph.source_of(encoder.id, "clip"), Handle(lora.id, 1))
            self.assertGreater(encoder.id, lora.id)
        self.assertEqual(lora.widgets_values, ["detail_tweaker.safetensors", 0.6, 0.6])

    def test_loras_argument_chains_before_style_steps(self):
        graph = GraphBuilder().build(
            [{"action": "lora", "name": "second.safetensors"}],
            loras=[("first.safetensors", 0.8)],
        ).graph
        first, second = graph.nodes_of_type("LoraLoader")
        self.assertEqual(first.widgets_values[0], "first.safetensors")
        self.assertEqual(graph.source_of(second.id, "model"), Handle(first.id, 0))
        sampler = only(graph, "KSampler")
        self.assertEqual(graph.source_of(sampler.id, "model"), Handle(second.id, 0))

    def test_guidance_hoisted_before_sampling(self):
        graph = GraphBuilder().build([
            {"action": "sample"},
            {"action": "guidance", "image": "pose.png", "type": "openpose", "strength": 0.9},
        ]).graph
        apply = only(graph, "ControlNetApplyAdvanced")
        sampler = only(graph, "KSampler")
        self.assertEqual(graph.source_of(sampler.id, "positive"), Handle(apply.id, 0))
        self.assertEqual(graph.source_of(sampler.id, "negative"), Handle(apply.id, 1))
        self.assertLess(apply.id, sampler.id)
        self.assertEqual(only(graph, "ControlNetLoader").widgets_values, ["control_v11p_sd15_openpose.pth"])
        self.assertEqual(only(graph, "LoadImage").widgets_values, ["pose.png"])

    def test_guidance_reuses_loaded_image(self):
        graph = GraphBuilder().build([
            {"action": "guidance", "image": "ref.png", "type": "canny"},
            {"action": "guidance", "image": "ref.png", "type": "depth"},
        ]).graph
        self.assertEqual(len(graph.nodes_of_type("LoadImage")), 1)
        first, second = graph.nodes_of_type("ControlNetApplyAdvanced")
        self.assertEqual(graph.source_of(second.id, "positive"), Handle(first.id, 0))

    def test_guidance_without_image_uses_default(self):
        graph = GraphBuilder().build([{"action": "guidance"}]).graph
        self.assertEqual(only(graph, "LoadImage").widgets_values, ["reference_image.png"])

    def test_upscale_resize_uses_tracked_size(self):
        graph = GraphBuilder().build([
            {"action": "sample", "width": 768, "height": 512},
            {"action": "upscale", "factor": 2},
        ]).graph
        scale = only(graph, "ImageScale")
        self.assertEqual(scale.widgets_values, ["nearest-exact", 1536, 1024, "disabled"])
        preview = only(graph, "PreviewImage")
        self.assertEqual(source_node(graph, preview, "images").id, scale.id)

    def test_upscale_with_model(self):
        graph = GraphBuilder().build([{"action": "upscale", "method": "model"}]).graph
        loader = only(graph, "UpscaleModelLoader")
        upscale = only(graph, "ImageUpscaleWithModel")
        self.assertEqual(loader.widgets_values, ["RealESRGAN_x4plus.pth"])
        self.assertEqual(graph.source_of(upscale.id, "upscale_model"), Handle(loader.id, 0))
        self.assertEqual(source_node(graph, upscale, "image").type, "VAEDecode")

    def test_effect_blends_image_with_itself(self):
        graph = GraphBuilder().build([{"action": "effect", "strength": 2, "mode": "bogus"}]).graph
        blend = only(graph, "ImageBlend")
        decode = only(graph, "VAEDecode")
        self.assertEqual(graph.source_of(blend.id, "image1"), Handle(decode.id, 0))
        self.assertEqual(graph.source_of(blend.id, "image2"), Handle(decode.id, 0))
        self.assertEqual(blend.widgets_values, [1.0, "overlay"])

    def test_post_process_order_kept(self):
        graph = GraphBuilder().build([
            {"action": "effect"},
            {"action": "upscale"},
            {"action": "sample"},
        ]).graph
        blend = only(graph, "ImageBlend")
        scale = only(graph, "ImageScale")
        self.assertLess(blend.id, scale.id)
        self.assertEqual(graph.source_of(scale.id, "image"), Handle(blend.id, 0))

    def test_unknown_actions_dropped(self):
        with_unknown = GraphBuilder().build(FOX_STEPS + [{"action": "teleport"}]).graph
        self.assertEqual(len(with_unknown.nodes), 7)

    def test_explicit_load_model_and_extension(self):
        graph = GraphBuilder().build([{"action": "load", "model": "dreamshaper_8"}]).graph
        self.assertEqual(only(graph, "CheckpointLoaderSimple").widgets_values, ["dreamshaper_8.safetensors"])

    def test_model_name_argument(self):
        graph = GraphBuilder().build([], model_name="sd_xl_base_1.0.safetensors").graph
        latent = only(graph, "EmptyLatentImage")
        self.assertEqual(latent.widgets_values, [1024, 1024, 1])

    def test_sampler_display_name(self):
        graph = GraphBuilder().build([{"action": "sample", "sampler": "DPM++ 2M Karras"}]).graph
        sampler = only(graph, "KSampler")
        self.assertEqual(sampler.widgets_values[3:5], ["dpmpp_2m", "karras"])

    def test_nan_guidance_scale_falls_back(self):
        graph = GraphBuilder().build([{"action": "sample", "guidanceScale": float("nan")}]).graph
        cfg = only(graph, "KSampler").widgets_values[2]
        self.assertEqual(cfg, 7.0)

    def test_large_seed_kept_exact(self):
        graph = GraphBuilder().build([{"action": "sample", "seed": 2**62 + 1}]).graph
        sampler = only(graph, "KSampler")
        self.assertEqual(sampler.widgets_values[0], 2**62 + 1)
        node = next(n for n in graph.to_dict()["nodes"] if n["type"] == "KSampler")
        self.assertEqual(node["widgets_values"][0], 2**62 + 1)

    def test_context_changes_defaults(self):
        graph = GraphBuilder().build([], context=GenerationContext(quality="high", aspect_ratio="16:9")).graph
        width, height, _ = only(graph, "EmptyLatentImage").widgets_values
        self.assertGreater(width, height)
        self.assertEqual(only(graph, "KSampler").widgets_values[1], 30)

    def test_save_node_option(self):
        builder = GraphBuilder(options=DispatchOptions(add_save_node=True, filename_prefix="fox"))
        graph = builder.build([]).graph
        save = only(graph, "SaveImage")
        self.assertEqual(save.widgets_values, ["fox"])

    def test_build_minimal(self):
        graph = GraphBuilder().build_minimal(prompt="a cat").graph
        self.assertEqual(len(graph.nodes), 7)
        self.assertEqual(graph.nodes_of_type("CLIPTextEncode")[0].widgets_values, ["a cat"])


class TestDispatcherDirect(unittest.TestCase):

    def test_canonical_order(self):
        steps = parse_steps([
            {"action": "upscale"}, {"action": "sample"}, {"action": "guidance"},
            {"action": "lora", "name": "x"}, {"action": "encode"}, {"action": "load"},
        ])
        self.assertEqual([s.action for s in canonical_order(steps)], [
            "load", "encode", "style_adjust", "guidance", "sample", "upscale",
        ])

    def test_post_process_without_image_skipped(self):
        dispatcher = StepDispatcher(NodeFactory())
        self.assertFalse(dispatcher.dispatch(UpscaleStep()))
        self.assertFalse(dispatcher.dispatch(EffectStep()))
        self.assertEqual(dispatcher.factory.nodes, [])

    def test_sample_loads_and_encodes_on_demand(self):
        dispatcher = StepDispatcher(NodeFactory())
        self.assertTrue(dispatcher.dispatch(SampleStep()))
        self.assertIsNotNone(dispatcher.chain.image)
        self.assertEqual(dispatcher.image_size, (512, 512))
        self.assertEqual(dispatcher.factory.nodes[0].type, "CheckpointLoaderSimple")

    def test_dispatch_logs_chain_state(self):
        dispatcher = StepDispatcher(NodeFactory())
        with self.assertLogs("graph_engine.dispatcher", level="DEBUG") as logs:
            dispatcher.dispatch(SampleStep())
        self.assertTrue(any("'model': None" in line for line in logs.output), logs.output)

    def test_upscale_model_factor(self):
        self.assertEqual(upscale_model_factor("RealESRGAN_x2plus.pth"), 2)
        self.assertEqual(upscale_model_factor("4x-UltraSharp.pth"), 4)
        self.assertEqual(upscale_model_factor("mystery.pth"), 4)


class FakeResolver:
    def resolve_steps(self, description):
        return [{"action": "sample", "steps": 15}]


class FakeRecommender:
    def __init__(self):
        self.keywords = None

    def select_model(self, keywords, style=None):
        self.keywords = keywords
        return "anime_model.safetensors"

    def select_loras(self, keywords, style=None):
        return [("anime_style.safetensors", 0.7)]


class TestCollaborators(unittest.TestCase):

    def test_build_from_description(self):
        recommender = FakeRecommender()
        graph = GraphBuilder().build_from_description(
            "an anime fox in the snow", FakeResolver(), recommender,
        ).graph
        self.assertEqual(only(graph, "CheckpointLoaderSimple").widgets_values, ["anime_model.safetensors"])
        self.assertEqual(only(graph, "LoraLoader").widgets_values[0], "anime_style.safetensors")
        self.assertEqual(only(graph, "KSampler").widgets_values[1], 15)
        self.assertIn("anime", recommender.keywords)
        self.assertNotIn("an", recommender.keywords)


if __name__ == "__main__":
    unittest.main(verbosity=2)
