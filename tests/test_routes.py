"""
HTTP tests for the graph routes, run in-process with FastAPI's TestClient.
"""

import sys
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fastapi.testclient import TestClient

from backend.server import create_app
from graph_engine.errors import UnknownNodeTypeError
from graph_engine.validator import ValidationResult
from settings.settings_manager import SettingsManager

FOX_REQUEST = {
    "steps": [
        {"action": "load"},
        {"action": "encode", "prompt": "a fox"},
        {"action": "sample", "steps": 25, "guidanceScale": 7.5, "sampler": "euler"},
    ],
}


class RouteTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="comfygraph_routes_")
        self.settings = SettingsManager(settings_dir=self.tmp)
        self.app = create_app(self.settings)
        self.client = TestClient(self.app)

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)


class TestHealth(RouteTestCase):

    def test_health(self):
        r = self.client.get("/api/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "ok")


class TestNodeCatalog(RouteTestCase):

    def test_list_nodes(self):
        data = self.client.get("/api/graph/nodes").json()
        self.assertGreaterEqual(data["count"], 20)
        self.assertIn("KSampler", data["nodes"])
        self.assertIn("sampling", data["categories"])

    def test_filter_by_category(self):
        data = self.client.get("/api/graph/nodes", params={"category": "sampling"}).json()
        self.assertIn("KSampler", data["nodes"])
        self.assertNotIn("CLIPTextEncode", data["nodes"])

    def test_single_node(self):
        r = self.client.get("/api/graph/nodes/CLIPTextEncode")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["name"], "CLIPTextEncode")

    def test_unknown_node(self):
        r = self.client.get("/api/graph/nodes/NotARealNode")
        self.assertEqual(r.status_code, 404)


class TestBuild(RouteTestCase):

    def test_build_example(self):
        r = self.client.post("/api/graph/build", json=FOX_REQUEST)
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertTrue(data["validation"]["is_valid"], data["validation"]["errors"])
        self.assertFalse(data["fallback_used"])

        workflow = data["workflow"]
        self.assertEqual(len(workflow["nodes"]), 7)
        self.assertEqual(workflow["state"]["lastNodeId"], 7)
        sampler = next(n for n in workflow["nodes"] if n["type"] == "KSampler")
        self.assertEqual(sampler["widgets_values"][1:], [25, 7.5, "euler", "karras", 1.0])
        self.assertEqual(data["explanation"]["title"], "ComfyUI Workflow")

    def test_build_with_model_and_loras(self):
        r = self.client.post("/api/graph/build", json={
            "steps": [],
            "model": "sd_xl_base_1.0",
            "loras": [{"name": "ink_style", "strength": 0.7}],
            "context": {"quality": "high", "aspect_ratio": "16:9"},
        })
        workflow = r.json()["workflow"]
        loader = next(n for n in workflow["nodes"] if n["type"] == "CheckpointLoaderSimple")
        self.assertEqual(loader["widgets_values"], ["sd_xl_base_1.0.safetensors"])
        lora = next(n for n in workflow["nodes"] if n["type"] == "LoraLoader")
        self.assertEqual(lora["widgets_values"], ["ink_style.safetensors", 0.7, 0.7])

    def test_settings_control_save_node(self):
        self.settings.set("builder.add_save_node", True, save=False)
        client = TestClient(create_app(self.settings))
        workflow = client.post("/api/graph/build", json=FOX_REQUEST).json()["workflow"]
        self.assertIn("SaveImage", [n["type"] for n in workflow["nodes"]])

    def test_fallback_on_invalid_graph(self):
        results = [ValidationResult(False, ["broken"]), ValidationResult(True, [])]
        with patch("backend.routes.graph.validate_graph", side_effect=results):
            data = self.client.post("/api/graph/build", json=FOX_REQUEST).json()
        self.assertTrue(data["fallback_used"])
        self.assertTrue(data["validation"]["is_valid"])
        self.assertEqual(len(data["workflow"]["nodes"]), 7)

    def test_fallback_disabled(self):
        request = dict(FOX_REQUEST, fallback=False)
        with patch("backend.routes.graph.validate_graph", return_value=ValidationResult(False, ["broken"])):
            data = self.client.post("/api/graph/build", json=request).json()
        self.assertFalse(data["fallback_used"])
        self.assertEqual(data["validation"]["errors"], ["broken"])

    def test_construction_error_is_500(self):
        builder = self.app.state.graph_builder
        with patch.object(builder, "build", side_effect=UnknownNodeTypeError("Mystery")):
            r = self.client.post("/api/graph/build", json=FOX_REQUEST)
        self.assertEqual(r.status_code, 500)
        self.assertIn("Mystery", r.json()["detail"])


class TestValidateAndImport(RouteTestCase):

    def test_validate_built_graph(self):
        workflow = self.client.post("/api/graph/build", json=FOX_REQUEST).json()["workflow"]
        r = self.client.post("/api/graph/validate", json={"workflow": workflow})
        self.assertEqual(r.json(), {"is_valid": True, "errors": []})

    def test_validate_rejects_version(self):
        workflow = self.client.post("/api/graph/build", json=FOX_REQUEST).json()["workflow"]
        workflow["version"] = 2
        data = self.client.post("/api/graph/validate", json={"workflow": workflow}).json()
        self.assertFalse(data["is_valid"])

    def test_validate_malformed_document(self):
        workflow = self.client.post("/api/graph/build", json=FOX_REQUEST).json()["workflow"]
        workflow["edges"][0]["origin_id"] = [1]
        workflow["nodes"][1]["inputs"] = ["text", "clip"]
        r = self.client.post("/api/graph/validate", json={"workflow": workflow})
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.json()["is_valid"])

    def test_import_huge_output_slot_is_400(self):
        api_map = {
            "1": {"class_type": "SomeCustomNode", "inputs": {}},
            "2": {"class_type": "PreviewImage", "inputs": {"images": ["1", 3000000]}},
        }
        r = self.client.post("/api/graph/import", json={"workflow": api_map})
        self.assertEqual(r.status_code, 400)

    def test_import(self):
        api_map = {
            "1": {"class_type": "CheckpointLoaderSimple", "inputs": {"ckpt_name": "m.safetensors"}},
            "2": {"class_type": "CLIPTextEncode", "inputs": {"text": "a", "clip": ["1", 1]}},
        }
        r = self.client.post("/api/graph/import", json={"workflow": api_map})
        self.assertEqual(r.status_code, 200)
        data = r.json()
        self.assertEqual(len(data["workflow"]["edges"]), 1)
        self.assertTrue(data["validation"]["is_valid"], data["validation"]["errors"])
        self.assertEqual(data["analysis"]["nodes"]["total"], 2)

    def test_import_cycle_is_400(self):
        api_map = {
            "1": {"class_type": "VAEDecode", "inputs": {"samples": ["2", 0]}},
            "2": {"class_type": "KSampler", "inputs": {"latent_image": ["1", 0]}},
        }
        r = self.client.post("/api/graph/import", json={"workflow": api_map})
        self.assertEqual(r.status_code, 400)


if __name__ == "__main__":
    unittest.main(verbosity=2)
