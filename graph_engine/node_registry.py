"""
ComfyUI Node Type Registry

Static catalog of the node types the graph builder knows how to emit.
Each entry declares its input slots (wire type, required flag, default,
options) and its ordered output slots. Output order is significant: it
determines the slot index a Handle refers to.

The catalog is plain data so a different table can be swapped in by
constructing a NodeTypeRegistry from it.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple, Iterable


# ============================================================
# COMFYUI DATA TYPE SYSTEM
# ============================================================

COMFYUI_DATA_TYPES = {
    "MODEL": "Diffusion model weights",
    "CLIP": "CLIP text encoder",
    "VAE": "Variational autoencoder",
    "CONDITIONING": "Encoded text conditioning",
    "LATENT": "Latent space tensor",
    "IMAGE": "Image tensor (B,H,W,C)",
    "MASK": "Mask tensor",
    "CONTROL_NET": "ControlNet model",
    "UPSCALE_MODEL": "Upscale model",
    "INT": "Integer value",
    "FLOAT": "Float value",
    "STRING": "Text string",
    "BOOLEAN": "Boolean toggle",
    "COMBO": "Selection from options",
}

# Types edited in place on the node rather than received over an edge
WIDGET_TYPES = frozenset({"INT", "FLOAT", "STRING", "BOOLEAN", "COMBO"})

NUMERIC_TYPES = frozenset({"INT", "FLOAT"})

ANY_TYPE = "*"

SAMPLER_NAMES = [
    "euler", "euler_ancestral", "heun", "heunpp2", "dpm_2", "dpm_2_ancestral",
    "lms", "dpm_fast", "dpm_adaptive", "dpmpp_2s_ancestral", "dpmpp_sde",
    "dpmpp_sde_gpu", "dpmpp_2m", "dpmpp_2m_sde", "dpmpp_2m_sde_gpu",
    "dpmpp_3m_sde", "dpmpp_3m_sde_gpu", "ddpm", "lcm", "ddim", "uni_pc",
    "uni_pc_bh2",
]

SCHEDULER_NAMES = ["normal", "karras", "exponential", "sgm_uniform", "simple", "ddim_uniform"]

UPSCALE_METHODS = ["nearest-exact", "bilinear", "area", "bicubic", "bislerp"]

BLEND_MODES = [
    "normal", "multiply", "screen", "overlay", "soft_light", "hard_light",
    "color_dodge", "color_burn", "darken", "lighten", "difference", "exclusion",
]


# ============================================================
# CURATED NODE CATALOG
# ============================================================

COMFYUI_NODE_CATALOG = {
    # === LOADERS ===
    "CheckpointLoaderSimple": {
        "category": "loader",
        "description": "Load a checkpoint model file",
        "inputs": {
            "ckpt_name": {"type": "COMBO", "required": True, "default": "v1-5-pruned-emaonly.safetensors",
                          "description": "Checkpoint filename from models/checkpoints/"},
        },
        "outputs": ["MODEL", "CLIP", "VAE"],
        "keywords": ["model", "checkpoint", "load", "base"],
    },
    "VAELoader": {
        "category": "loader",
        "description": "Load a standalone VAE model",
        "inputs": {
            "vae_name": {"type": "COMBO", "required": True, "description": "VAE filename from models/vae/"},
        },
        "outputs": ["VAE"],
        "keywords": ["vae", "encode", "decode"],
    },
    "LoraLoader": {
        "category": "loader",
        "description": "Load a LoRA and apply it to MODEL and CLIP",
        "inputs": {
            "model": {"type": "MODEL", "required": True, "description": "Input model"},
            "clip": {"type": "CLIP", "required": True, "description": "Input CLIP"},
            "lora_name": {"type": "COMBO", "required": True, "description": "LoRA filename from models/loras/"},
            "strength_model": {"type": "FLOAT", "required": True, "default": 1.0, "description": "LoRA strength for model"},
            "strength_clip": {"type": "FLOAT", "required": True, "default": 1.0, "description": "LoRA strength for CLIP"},
        },
        "outputs": ["MODEL", "CLIP"],
        "keywords": ["lora", "style", "character", "enhancement"],
    },
    "CLIPSetLastLayer": {
        "category": "loader",
        "description": "Skip the last CLIP layers (clip skip)",
        "inputs": {
            "clip": {"type": "CLIP", "required": True},
            "stop_at_clip_layer": {"type": "INT", "required": True, "default": -1},
        },
        "outputs": ["CLIP"],
        "keywords": ["clip", "skip", "layer"],
    },
    "ControlNetLoader": {
        "category": "loader",
        "description": "Load a ControlNet model",
        "inputs": {
            "control_net_name": {"type": "COMBO", "required": True, "description": "ControlNet filename"},
        },
        "outputs": ["CONTROL_NET"],
        "keywords": ["controlnet", "control", "load"],
    },
    "UpscaleModelLoader": {
        "category": "loader",
        "description": "Load an upscale model (ESRGAN, etc.)",
        "inputs": {
            "model_name": {"type": "COMBO", "required": True, "default": "RealESRGAN_x4plus.pth",
                           "description": "Upscale model filename"},
        },
        "outputs": ["UPSCALE_MODEL"],
        "keywords": ["upscale", "model", "load"],
    },

    # === CONDITIONING ===
    "CLIPTextEncode": {
        "category": "conditioning",
        "description": "Encode text into conditioning using CLIP",
        "inputs": {
            "text": {"type": "STRING", "required": True, "default": "", "description": "Text prompt to encode"},
            "clip": {"type": "CLIP", "required": True, "description": "CLIP model"},
        },
        "outputs": ["CONDITIONING"],
        "keywords": ["prompt", "text", "conditioning", "positive", "negative"],
    },
    "ConditioningCombine": {
        "category": "conditioning",
        "description": "Combine two conditionings (add together)",
        "inputs": {
            "conditioning_1": {"type": "CONDITIONING", "required": True},
            "conditioning_2": {"type": "CONDITIONING", "required": True},
        },
        "outputs": ["CONDITIONING"],
        "keywords": ["combine", "merge", "conditioning"],
    },
    "ConditioningSetArea": {
        "category": "conditioning",
        "description": "Set area for regional conditioning",
        "inputs": {
            "conditioning": {"type": "CONDITIONING", "required": True},
            "width": {"type": "INT", "required": True, "default": 64},
            "height": {"type": "INT", "required": True, "default": 64},
            "x": {"type": "INT", "required": True, "default": 0},
            "y": {"type": "INT", "required": True, "default": 0},
            "strength": {"type": "FLOAT", "required": True, "default": 1.0},
        },
        "outputs": ["CONDITIONING"],
        "keywords": ["area", "region", "conditioning", "mask"],
    },
    "ControlNetApply": {
        "category": "conditioning",
        "description": "Apply ControlNet to a single conditioning",
        "inputs": {
            "conditioning": {"type": "CONDITIONING", "required": True},
            "control_net": {"type": "CONTROL_NET", "required": True},
            "image": {"type": "IMAGE", "required": True},
            "strength": {"type": "FLOAT", "required": True, "default": 1.0},
        },
        "outputs": ["CONDITIONING"],
        "keywords": ["controlnet", "apply", "control", "conditioning"],
    },
    "ControlNetApplyAdvanced": {
        "category": "conditioning",
        "description": "Apply ControlNet to positive and negative conditioning",
        "inputs": {
            "positive": {"type": "CONDITIONING", "required": True},
            "negative": {"type": "CONDITIONING", "required": True},
            "control_net": {"type": "CONTROL_NET", "required": True},
            "image": {"type": "IMAGE", "required": True, "description": "Control image (pose, depth, etc.)"},
            "strength": {"type": "FLOAT", "required": True, "default": 1.0},
            "start_percent": {"type": "FLOAT", "required": True, "default": 0.0},
            "end_percent": {"type": "FLOAT", "required": True, "default": 1.0},
        },
        "outputs": ["CONDITIONING", "CONDITIONING"],
        "output_names": ["positive", "negative"],
        "keywords": ["controlnet", "advanced", "control", "conditioning"],
    },

    # === LATENT ===
    "EmptyLatentImage": {
        "category": "latent",
        "description": "Create an empty latent image (starting point for txt2img)",
        "inputs": {
            "width": {"type": "INT", "required": True, "default": 512, "description": "Image width"},
            "height": {"type": "INT", "required": True, "default": 512, "description": "Image height"},
            "batch_size": {"type": "INT", "required": True, "default": 1},
        },
        "outputs": ["LATENT"],
        "keywords": ["empty", "blank", "start", "initial"],
    },
    "VAEEncode": {
        "category": "latent",
        "description": "Encode an image into latent space (for img2img)",
        "inputs": {
            "pixels": {"type": "IMAGE", "required": True, "description": "Image to encode"},
            "vae": {"type": "VAE", "required": True},
        },
        "outputs": ["LATENT"],
        "keywords": ["encode", "image", "latent"],
    },
    "VAEDecode": {
        "category": "latent",
        "description": "Decode latent back to image",
        "inputs": {
            "samples": {"type": "LATENT", "required": True, "description": "Latent to decode"},
            "vae": {"type": "VAE", "required": True},
        },
        "outputs": ["IMAGE"],
        "keywords": ["decode", "latent", "image", "final"],
    },
    "LatentUpscale": {
        "category": "latent",
        "description": "Upscale latent space (for hires fix)",
        "inputs": {
            "samples": {"type": "LATENT", "required": True},
            "upscale_method": {"type": "COMBO", "required": True, "default": "nearest-exact",
                               "options": UPSCALE_METHODS},
            "width": {"type": "INT", "required": True, "default": 1024},
            "height": {"type": "INT", "required": True, "default": 1024},
            "crop": {"type": "COMBO", "required": True, "default": "disabled", "options": ["disabled", "center"]},
        },
        "outputs": ["LATENT"],
        "keywords": ["upscale", "enlarge", "resize", "bigger"],
    },

    # === SAMPLING ===
    "KSampler": {
        "category": "sampling",
        "description": "Main sampling node - generates latent from noise",
        "inputs": {
            "model": {"type": "MODEL", "required": True},
            "seed": {"type": "INT", "required": True, "default": -1, "description": "Random seed (-1 = random)"},
            "steps": {"type": "INT", "required": True, "default": 20, "description": "Sampling steps"},
            "cfg": {"type": "FLOAT", "required": True, "default": 8.0, "description": "CFG scale"},
            "sampler_name": {"type": "COMBO", "required": True, "default": "euler", "options": SAMPLER_NAMES},
            "scheduler": {"type": "COMBO", "required": True, "default": "normal", "options": SCHEDULER_NAMES},
            "positive": {"type": "CONDITIONING", "required": True},
            "negative": {"type": "CONDITIONING", "required": True},
            "latent_image": {"type": "LATENT", "required": True},
            "denoise": {"type": "FLOAT", "required": True, "default": 1.0,
                        "description": "Denoise strength (1.0 = full)"},
        },
        "outputs": ["LATENT"],
        "keywords": ["sample", "generate", "create", "render", "sampling"],
    },
    "KSamplerAdvanced": {
        "category": "sampling",
        "description": "Advanced sampler with start/end step control",
        "inputs": {
            "model": {"type": "MODEL", "required": True},
            "add_noise": {"type": "COMBO", "required": True, "default": "enable", "options": ["enable", "disable"]},
            "noise_seed": {"type": "INT", "required": True, "default": -1},
            "steps": {"type": "INT", "required": True, "default": 20},
            "cfg": {"type": "FLOAT", "required": True, "default": 8.0},
            "sampler_name": {"type": "COMBO", "required": True, "default": "euler", "options": SAMPLER_NAMES},
            "scheduler": {"type": "COMBO", "required": True, "default": "normal", "options": SCHEDULER_NAMES},
            "positive": {"type": "CONDITIONING", "required": True},
            "negative": {"type": "CONDITIONING", "required": True},
            "latent_image": {"type": "LATENT", "required": True},
            "start_at_step": {"type": "INT", "required": True, "default": 0},
            "end_at_step": {"type": "INT", "required": True, "default": 10000},
            "return_with_leftover_noise": {"type": "COMBO", "required": True, "default": "disable",
                                           "options": ["enable", "disable"]},
        },
        "outputs": ["LATENT"],
        "keywords": ["advanced", "sample", "generate", "control", "steps"],
    },

    # === IMAGE ===
    "LoadImage": {
        "category": "image",
        "description": "Load an image from ComfyUI input/ directory",
        "inputs": {
            "image": {"type": "COMBO", "required": True, "description": "Image filename in input/"},
        },
        "outputs": ["IMAGE", "MASK"],
        "keywords": ["load", "input", "source", "reference"],
    },
    "ImageScale": {
        "category": "image",
        "description": "Resize image to exact dimensions",
        "inputs": {
            "image": {"type": "IMAGE", "required": True},
            "upscale_method": {"type": "COMBO", "required": True, "default": "nearest-exact",
                               "options": UPSCALE_METHODS},
            "width": {"type": "INT", "required": True, "default": 512},
            "height": {"type": "INT", "required": True, "default": 512},
            "crop": {"type": "COMBO", "required": True, "default": "disabled", "options": ["disabled", "center"]},
        },
        "outputs": ["IMAGE"],
        "keywords": ["scale", "resize", "dimensions"],
    },
    "ImageScaleBy": {
        "category": "image",
        "description": "Resize image by a factor",
        "inputs": {
            "image": {"type": "IMAGE", "required": True},
            "upscale_method": {"type": "COMBO", "required": True, "default": "nearest-exact",
                               "options": UPSCALE_METHODS},
            "scale_by": {"type": "FLOAT", "required": True, "default": 1.0},
        },
        "outputs": ["IMAGE"],
        "keywords": ["scale", "resize", "factor"],
    },
    "ImageUpscaleWithModel": {
        "category": "image",
        "description": "Upscale image using a loaded upscale model",
        "inputs": {
            "upscale_model": {"type": "UPSCALE_MODEL", "required": True},
            "image": {"type": "IMAGE", "required": True},
        },
        "outputs": ["IMAGE"],
        "keywords": ["upscale", "enlarge", "super resolution", "enhance"],
    },
    "ImageBlend": {
        "category": "image",
        "description": "Blend two images together",
        "inputs": {
            "image1": {"type": "IMAGE", "required": True},
            "image2": {"type": "IMAGE", "required": True},
            "blend_factor": {"type": "FLOAT", "required": True, "default": 0.5},
            "blend_mode": {"type": "COMBO", "required": True, "default": "normal", "options": BLEND_MODES},
        },
        "outputs": ["IMAGE"],
        "keywords": ["blend", "mix", "combine", "overlay", "effect"],
    },

    # === OUTPUT ===
    "PreviewImage": {
        "category": "output",
        "description": "Preview image in the interface (temporary)",
        "inputs": {
            "images": {"type": "IMAGE", "required": True},
        },
        "outputs": [],
        "keywords": ["preview", "display", "show"],
    },
    "SaveImage": {
        "category": "output",
        "description": "Save image to ComfyUI output/ directory",
        "inputs": {
            "images": {"type": "IMAGE", "required": True},
            "filename_prefix": {"type": "STRING", "required": False, "default": "ComfyUI"},
        },
        "outputs": [],
        "keywords": ["save", "output", "export"],
    },
}


# ============================================================
# TYPED VIEW
# ============================================================

@dataclass(frozen=True)
class InputDef:
    """One declared input slot of a node type."""
    name: str
    type: str
    required: bool = True
    default: Any = None
    options: Optional[Tuple[Any, ...]] = None
    description: str = ""

    @property
    def is_widget(self) -> bool:
        return self.type in WIDGET_TYPES


@dataclass(frozen=True)
class OutputDef:
    """One output slot; its position in NodeTypeDef.outputs is the slot index."""
    name: str
    type: str


@dataclass(frozen=True)
class NodeTypeDef:
    name: str
    category: str
    description: str = ""
    inputs: Tuple[InputDef, ...] = ()
    outputs: Tuple[OutputDef, ...] = ()
    keywords: Tuple[str, ...] = field(default_factory=tuple)

    def get_input(self, name: str) -> Optional[InputDef]:
        for inp in self.inputs:
            if inp.name == name:
                return inp
        return None

    def input_names(self) -> List[str]:
        return [inp.name for inp in self.inputs]

    def required_inputs(self) -> List[str]:
        return [inp.name for inp in self.inputs if inp.required]

    def output_index(self, name: str) -> int:
        """Slot index of a named output (raises ValueError if absent)."""
        for idx, out in enumerate(self.outputs):
            if out.name == name:
                return idx
        raise ValueError(f"{self.name} has no output '{name}'")


def node_type_from_entry(name: str, entry: Dict[str, Any]) -> NodeTypeDef:
    """Build a NodeTypeDef from one catalog dict entry."""
    inputs = tuple(
        InputDef(
            name=input_name,
            type=spec["type"],
            required=spec.get("required", True),
            default=spec.get("default"),
            options=tuple(spec["options"]) if spec.get("options") else None,
            description=spec.get("description", ""),
        )
        for input_name, spec in entry.get("inputs", {}).items()
    )
    output_types = entry.get("outputs", [])
    output_names = entry.get("output_names") or output_types
    outputs = tuple(OutputDef(name=n, type=t) for n, t in zip(output_names, output_types))
    return NodeTypeDef(
        name=name,
        category=entry.get("category", ""),
        description=entry.get("description", ""),
        inputs=inputs,
        outputs=outputs,
        keywords=tuple(entry.get("keywords", [])),
    )


class NodeTypeRegistry:
    """Read-only lookup table of node type definitions."""

    def __init__(self, catalog: Optional[Dict[str, Dict[str, Any]]] = None):
        source = COMFYUI_NODE_CATALOG if catalog is None else catalog
        self._catalog = source
        self._defs: Dict[str, NodeTypeDef] = {
            name: node_type_from_entry(name, entry) for name, entry in source.items()
        }

    def lookup(self, type_name: str) -> Optional[NodeTypeDef]:
        return self._defs.get(type_name)

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._defs

    def __len__(self) -> int:
        return len(self._defs)

    def names(self) -> List[str]:
        return list(self._defs.keys())

    def categories(self) -> List[str]:
        return sorted({d.category for d in self._defs.values()})

    def raw_entry(self, type_name: str) -> Optional[Dict[str, Any]]:
        return self._catalog.get(type_name)

    def definitions(self) -> Iterable[NodeTypeDef]:
        return self._defs.values()


DEFAULT_REGISTRY = NodeTypeRegistry()


# ============================================================
# NODE CATALOG QUERY FUNCTIONS
# ============================================================

def get_node_type_def(type_name: str) -> Optional[NodeTypeDef]:
    """Look up a node type in the default registry."""
    return DEFAULT_REGISTRY.lookup(type_name)


def get_node_catalog(
    category: Optional[str] = None,
    search: Optional[str] = None,
    registry: Optional[NodeTypeRegistry] = None,
) -> Dict[str, Dict]:
    """
    Filtered view of the raw catalog entries.

    `search` matches the type name, description, category or any keyword.
    """
    registry = registry or DEFAULT_REGISTRY
    needle = search.lower() if search else None
    results = {}

    for node_def in registry.definitions():
        if category and node_def.category != category:
            continue
        if needle:
            haystack = [node_def.name, node_def.description, node_def.category, *node_def.keywords]
            if not any(needle in text.lower() for text in haystack):
                continue
        results[node_def.name] = registry.raw_entry(node_def.name)

    return results


def list_categories() -> List[str]:
    return DEFAULT_REGISTRY.categories()


def find_nodes_by_keyword(keyword: str) -> List[NodeTypeDef]:
    """Node types whose keyword tags contain the given keyword."""
    needle = keyword.lower()
    return [
        d for d in DEFAULT_REGISTRY.definitions()
        if any(needle in k.lower() for k in d.keywords)
    ]
