"""
Intent step models.

Steps arrive from the prompt parsing layer as `{action, parameters}` dicts
(or flat dicts with the parameters next to `action`). Each action has its
own typed model; together they form a discriminated union keyed by
`action`. Parsing is permissive: unknown actions are dropped and numbers
that cannot be read become None so the dispatcher falls back to defaults.
"""

import logging
import math
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

logger = logging.getLogger("graph_engine.steps")


# -----------------------------
# Lenient scalar coercion
# -----------------------------

def _lenient_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("x")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _lenient_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    # Keep integers exact; seeds run up to 2**63-1
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    number = _lenient_float(value)
    return int(number) if number is not None else None


def _lenient_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


LenientFloat = Annotated[Optional[float], BeforeValidator(_lenient_float)]
LenientInt = Annotated[Optional[int], BeforeValidator(_lenient_int)]
LenientStr = Annotated[Optional[str], BeforeValidator(_lenient_str)]


def _alias(*names: str):
    return Field(default=None, validation_alias=AliasChoices(*names))


class StepModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    action: str


class LoadStep(StepModel):
    action: Literal["load"] = "load"
    model: LenientStr = _alias("model", "ckpt_name", "checkpoint")


class EncodeStep(StepModel):
    action: Literal["encode"] = "encode"
    prompt: LenientStr = _alias("prompt", "text", "positive")
    negative_prompt: LenientStr = _alias("negative_prompt", "negativePrompt", "negative")


class StyleAdjustStep(StepModel):
    """LoRA application."""
    action: Literal["style_adjust"] = "style_adjust"
    name: LenientStr = _alias("name", "lora_name", "lora")
    strength: LenientFloat = None
    strength_model: LenientFloat = _alias("strength_model", "strengthModel")
    strength_clip: LenientFloat = _alias("strength_clip", "strengthClip")


class GuidanceStep(StepModel):
    """ControlNet guidance from a reference image."""
    action: Literal["guidance"] = "guidance"
    image: LenientStr = _alias("image", "reference_image", "referenceImage")
    type: LenientStr = _alias("type", "control_type", "controlType")
    model: LenientStr = _alias("model", "control_net_name", "controlNetName")
    strength: LenientFloat = None
    start_percent: LenientFloat = _alias("start_percent", "startPercent")
    end_percent: LenientFloat = _alias("end_percent", "endPercent")


class SampleStep(StepModel):
    action: Literal["sample"] = "sample"
    seed: LenientInt = None
    steps: LenientInt = _alias("steps", "stepCount", "step_count")
    guidance_scale: LenientFloat = _alias("guidance_scale", "guidanceScale", "cfg")
    sampler: LenientStr = _alias("sampler", "sampler_name", "samplerName")
    scheduler: LenientStr = _alias("scheduler", "scheduleName", "schedule_name")
    denoise: LenientFloat = _alias("denoise", "denoiseStrength", "denoise_strength")
    width: LenientInt = None
    height: LenientInt = None
    batch_size: LenientInt = _alias("batch_size", "batchSize")


class UpscaleStep(StepModel):
    action: Literal["upscale"] = "upscale"
    method: LenientStr = None
    factor: LenientFloat = _alias("factor", "scale", "scale_by")
    model: LenientStr = _alias("model", "model_name", "upscale_model")
    algorithm: LenientStr = _alias("algorithm", "upscale_method")


class EffectStep(StepModel):
    action: Literal["effect"] = "effect"
    type: LenientStr = _alias("type", "effect")
    strength: LenientFloat = None
    mode: LenientStr = _alias("mode", "blend_mode")


Step = Annotated[
    Union[LoadStep, EncodeStep, StyleAdjustStep, GuidanceStep, SampleStep, UpscaleStep, EffectStep],
    Field(discriminator="action"),
]

STEP_MODELS = {
    "load": LoadStep,
    "encode": EncodeStep,
    "style_adjust": StyleAdjustStep,
    "guidance": GuidanceStep,
    "sample": SampleStep,
    "upscale": UpscaleStep,
    "effect": EffectStep,
}

ACTION_ALIASES = {
    "load": "load",
    "load_model": "load",
    "checkpoint": "load",
    "encode": "encode",
    "prompt": "encode",
    "style_adjust": "style_adjust",
    "styleadjust": "style_adjust",
    "style": "style_adjust",
    "lora": "style_adjust",
    "guidance": "guidance",
    "controlnet": "guidance",
    "control_net": "guidance",
    "sample": "sample",
    "generate": "sample",
    "upscale": "upscale",
    "effect": "effect",
}

POST_PROCESS_ACTIONS = ("post_process", "postprocess")


def normalize_action(action: Any, parameters: Dict[str, Any]) -> Optional[str]:
    """Canonical action tag, or None for actions the dispatcher does not handle."""
    if not isinstance(action, str):
        return None
    key = action.strip().lower().replace("-", "_")
    if key in POST_PROCESS_ACTIONS:
        kind = str(parameters.get("kind") or parameters.get("operation") or "upscale").lower()
        return "effect" if kind == "effect" else "upscale"
    return ACTION_ALIASES.get(key)


def parse_step(raw: Any):
    """
    Turn one raw step into its typed model.

    Returns None (and logs) for unknown actions or unreadable entries.
    """
    if isinstance(raw, StepModel):
        return raw
    if not isinstance(raw, dict):
        logger.debug(f"Dropping non-dict step: {raw!r}")
        return None

    parameters = raw.get("parameters")
    flat = {k: v for k, v in raw.items() if k not in ("action", "parameters")}
    params = dict(flat)
    if isinstance(parameters, dict):
        params.update(parameters)

    action = normalize_action(raw.get("action"), params)
    if action is None:
        logger.debug(f"Dropping step with unsupported action: {raw.get('action')!r}")
        return None

    params["action"] = action
    try:
        return STEP_MODELS[action].model_validate(params)
    except ValidationError as e:
        logger.warning(f"Dropping malformed {action} step: {e.errors()}")
        return None


def parse_steps(raw_steps: Optional[Iterable[Any]]) -> List[StepModel]:
    """Parse a step sequence, preserving order and dropping unusable entries."""
    steps = []
    for raw in raw_steps or []:
        step = parse_step(raw)
        if step is not None:
            steps.append(step)
    return steps
