"""
Generation defaults.

Picks resolution, step count, guidance scale, sampler and scheduler when a
step under-specifies them. Model-family defaults come from the checkpoint
filename; an optional GenerationContext (style, quality, aspect ratio)
adjusts them.
"""

import math
import random
from dataclasses import dataclass
from typing import Dict, Any, Optional

from .node_registry import SAMPLER_NAMES

KNOWN_EXTENSIONS = (".safetensors", ".ckpt", ".pt", ".pth", ".bin", ".gguf")

ASPECT_RATIOS = {
    "1:1": (1, 1),
    "3:4": (3, 4), "4:3": (4, 3),
    "4:5": (4, 5), "5:4": (5, 4),
    "2:3": (2, 3), "3:2": (3, 2),
    "9:16": (9, 16), "16:9": (16, 9),
    "21:9": (21, 9),
}

QUALITY_STEP_DELTA = {"draft": -10, "standard": 0, "high": 10, "ultra": 20}

STYLE_CFG_DELTA = {"realistic": -1.0, "artistic": 1.0, "anime": 0.5, "fantasy": 1.5}

MIN_STEPS = 10
MAX_STEPS = 100


@dataclass
class GenerationContext:
    """Style/quality hints supplied by the caller's prompt analysis."""
    style: Optional[str] = None
    quality: str = "standard"
    aspect_ratio: Optional[str] = None


def detect_model_defaults(checkpoint: str) -> Dict[str, Any]:
    """Auto-detect generation defaults based on checkpoint filename."""
    name_lower = str(checkpoint or "").lower()

    if "flux" in name_lower:
        return {
            "cfg": 3.5, "sampler_name": "euler", "scheduler": "simple",
            "steps": 25, "width": 1024, "height": 1024,
        }
    elif "xl" in name_lower or "sdxl" in name_lower or "turbo" in name_lower:
        return {
            "cfg": 8.0, "sampler_name": "dpmpp_2m", "scheduler": "karras",
            "steps": 30, "width": 1024, "height": 1024,
        }
    else:
        return {
            "cfg": 7.0, "sampler_name": "dpmpp_2m", "scheduler": "karras",
            "steps": 20, "width": 512, "height": 512,
        }


def ensure_checkpoint_extension(checkpoint: str) -> str:
    """
    Append .safetensors if the checkpoint name has no model file extension.
    ComfyUI requires exact filenames including extensions.
    """
    if not checkpoint:
        return checkpoint
    basename = checkpoint.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    if any(basename.lower().endswith(ext) for ext in KNOWN_EXTENSIONS):
        return checkpoint
    return checkpoint + ".safetensors"


def resolve_seed(seed: Any) -> int:
    """Resolve seed (-1 or missing means random)."""
    if seed is None or seed < 0:
        return random.randint(0, 2**63 - 1)
    return int(seed)


def _snap64(value: float) -> int:
    return max(64, int(round(value / 64.0)) * 64)


def aspect_dimensions(base_side: int, aspect_ratio: Optional[str]):
    """Width/height with roughly base_side^2 pixels in the given ratio."""
    ratio = ASPECT_RATIOS.get(aspect_ratio or "")
    if not ratio:
        return base_side, base_side
    r = ratio[0] / ratio[1]
    return _snap64(base_side * math.sqrt(r)), _snap64(base_side / math.sqrt(r))


def resolve_generation_defaults(
    checkpoint: str,
    context: Optional[GenerationContext] = None,
    lora_count: int = 0,
) -> Dict[str, Any]:
    """Model defaults adjusted for the generation context and LoRA count."""
    defaults = detect_model_defaults(checkpoint)
    defaults["denoise"] = 1.0
    defaults["steps"] += lora_count * 3

    if context is not None:
        defaults["width"], defaults["height"] = aspect_dimensions(defaults["width"], context.aspect_ratio)
        defaults["steps"] += QUALITY_STEP_DELTA.get(context.quality, 0)

        cfg = defaults["cfg"] + STYLE_CFG_DELTA.get(context.style or "", 0.0)
        if context.style == "realistic":
            cfg = max(cfg, 4.0)
        if context.quality == "draft":
            cfg = max(cfg - 2.0, 3.0)
        elif context.quality == "ultra":
            cfg += 1.0
        defaults["cfg"] = round(cfg, 1)

    defaults["steps"] = min(max(defaults["steps"], MIN_STEPS), MAX_STEPS)
    return defaults


# Display names used by A1111-style prompts and LLM output
SAMPLER_ALIASES = {
    "euler a": "euler_ancestral",
    "euler_a": "euler_ancestral",
    "dpm++ 2m": "dpmpp_2m",
    "dpm++ 2m sde": "dpmpp_2m_sde",
    "dpm++ sde": "dpmpp_sde",
    "dpm++ 2s a": "dpmpp_2s_ancestral",
    "dpm++ 3m sde": "dpmpp_3m_sde",
    "unipc": "uni_pc",
}


def normalize_sampler_name(name: Optional[str]):
    """
    Map a sampler display name onto ComfyUI's sampler_name.

    Returns (sampler_name, scheduler_hint); both are None when the name is
    not recognised. "DPM++ 2M Karras" yields ("dpmpp_2m", "karras").
    """
    if not name:
        return None, None
    key = str(name).strip().lower()
    scheduler = None
    if key.endswith(" karras"):
        key = key[: -len(" karras")].strip()
        scheduler = "karras"
    if key in SAMPLER_NAMES:
        return key, scheduler
    if key in SAMPLER_ALIASES:
        return SAMPLER_ALIASES[key], scheduler
    key = key.replace("++", "pp").replace(" ", "_")
    if key in SAMPLER_NAMES:
        return key, scheduler
    return None, None
