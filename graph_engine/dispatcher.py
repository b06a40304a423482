"""
Step Dispatcher

Turns intent steps into sub-graphs. Steps are walked in canonical stage
order (load, encode, style adjust, guidance, sample + decode, post-process)
and every case reads the signal handles it needs from the chain and writes
back the ones it redefines. A preview node closes the graph.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .graph_types import ExplanationStep, Handle
from .model_defaults import (
    GenerationContext,
    ensure_checkpoint_extension,
    normalize_sampler_name,
    resolve_generation_defaults,
)
from .node_factory import NodeFactory
from .node_registry import BLEND_MODES, SCHEDULER_NAMES, UPSCALE_METHODS
from .signal_chain import SignalChain
from .steps import (
    EffectStep,
    EncodeStep,
    GuidanceStep,
    LoadStep,
    SampleStep,
    StepModel,
    StyleAdjustStep,
    UpscaleStep,
    parse_step,
    parse_steps,
)

logger = logging.getLogger("graph_engine.dispatcher")


STAGE_ORDER = {
    "load": 0,
    "encode": 1,
    "style_adjust": 2,
    "guidance": 3,
    "sample": 4,
    "upscale": 5,
    "effect": 5,
}


def canonical_order(steps: Iterable[StepModel]) -> List[StepModel]:
    """Stable sort by stage; steps within one stage keep their input order."""
    return sorted(steps, key=lambda s: STAGE_ORDER.get(s.action, len(STAGE_ORDER)))


@dataclass
class DispatchOptions:
    """Fallback values used when a step leaves something out."""
    checkpoint: str = "v1-5-pruned-emaonly.safetensors"
    prompt: str = ""
    negative_prompt: str = "blurry, low quality, distorted"
    reference_image: str = "reference_image.png"
    upscale_model: str = "RealESRGAN_x4plus.pth"
    controlnet_template: str = "control_v11p_sd15_{type}.pth"
    controlnet_type: str = "canny"
    add_save_node: bool = False
    filename_prefix: str = "ComfyUI"
    # Overrides applied on top of the model-family defaults
    generation_defaults: Optional[Dict[str, Any]] = None


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


_MODEL_SCALE_RE = re.compile(r"(?:^|[^a-z0-9])(\d)x|x(\d)(?:[^0-9]|$)", re.IGNORECASE)


def upscale_model_factor(model_name: str) -> int:
    """Scale factor encoded in an upscale model filename (4x-UltraSharp, x2plus)."""
    match = _MODEL_SCALE_RE.search(model_name or "")
    if not match:
        return 4
    return int(match.group(1) or match.group(2))


class StepDispatcher:
    """
    Emits nodes for one build session.

    The dispatcher owns the session's SignalChain; the NodeFactory it is
    given owns the node and edge lists.
    """

    def __init__(
        self,
        factory: NodeFactory,
        chain: Optional[SignalChain] = None,
        options: Optional[DispatchOptions] = None,
        context: Optional[GenerationContext] = None,
    ):
        self.factory = factory
        self.chain = chain if chain is not None else SignalChain()
        self.options = options or DispatchOptions()
        self.context = context
        self.explanation: List[ExplanationStep] = []
        self.prompt = self.options.prompt
        self.negative_prompt = self.options.negative_prompt
        self.checkpoint_name: Optional[str] = None
        self.defaults: Optional[Dict[str, Any]] = None
        self.image_size: Optional[Tuple[int, int]] = None
        self.lora_count = 0
        self._loaded_images: Dict[str, Handle] = {}

        self._handlers = {
            "load": self._dispatch_load,
            "encode": self._dispatch_encode,
            "style_adjust": self._dispatch_style_adjust,
            "guidance": self._dispatch_guidance,
            "sample": self._dispatch_sample,
            "upscale": self._dispatch_upscale,
            "effect": self._dispatch_effect,
        }

    # ------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------

    def dispatch(self, step: StepModel) -> bool:
        """
        Emit the sub-graph for one step.

        Returns False when the step was dropped or skipped.
        """
        handler = self._handlers.get(getattr(step, "action", None))
        if handler is None:
            logger.debug(f"No handler for step {step!r}, dropping")
            return False
        logger.debug(f"Dispatching {step.action} with chain {self.chain.snapshot()}")
        return handler(step)

    def dispatch_all(self, steps: Iterable[Any], loras: Sequence[Any] = ()):
        """
        Dispatch a whole step sequence.

        Explicit load/encode steps are merged (last value wins), resolved
        LoRAs run before explicit style steps, and a default sample step is
        added when none was given.
        """
        ordered = canonical_order(parse_steps(steps))
        lora_steps = [self._lora_step(entry) for entry in loras or ()]
        lora_steps = [s for s in lora_steps if s is not None]

        load = LoadStep(model=_first(*reversed([s.model for s in ordered if isinstance(s, LoadStep)])))
        encode_steps = [s for s in ordered if isinstance(s, EncodeStep)]
        encode = EncodeStep(
            prompt=_first(*reversed([s.prompt for s in encode_steps])),
            negative_prompt=_first(*reversed([s.negative_prompt for s in encode_steps])),
        )
        rest = [s for s in ordered if not isinstance(s, (LoadStep, EncodeStep))]
        if not any(isinstance(s, SampleStep) for s in rest):
            logger.debug("No sample step given, adding a default one")
            rest = canonical_order(rest + [SampleStep()])

        self.lora_count = len(lora_steps) + sum(isinstance(s, StyleAdjustStep) for s in rest)

        self.dispatch(load)
        self.dispatch(encode)
        for step in lora_steps:
            self.dispatch(step)
        for step in rest:
            self.dispatch(step)
        self.finish()

    def finish(self):
        """Append the terminal preview (and optional save) node."""
        if self.chain.image is None:
            logger.warning("No image produced, graph has no preview node")
            return
        preview = self.factory.create_node("PreviewImage", {"images": self.chain.image})
        self._explain("Preview final image", preview.type)
        if self.options.add_save_node:
            save = self.factory.create_node("SaveImage", {
                "images": self.chain.image,
                "filename_prefix": self.options.filename_prefix,
            })
            self._explain(f"Save image with prefix '{self.options.filename_prefix}'", save.type,
                          filename_prefix=self.options.filename_prefix)

    # ------------------------------------------------------------
    # Load / encode
    # ------------------------------------------------------------

    def _dispatch_load(self, step: LoadStep) -> bool:
        if self.chain.model is not None:
            logger.debug("Checkpoint already loaded, ignoring extra load step")
            return False

        name = ensure_checkpoint_extension(step.model or self.options.checkpoint)
        node = self.factory.create_node("CheckpointLoaderSimple", {"ckpt_name": name})
        self.chain.model = node.handle(0)
        self.chain.text_encoder = node.handle(1)
        self.chain.vae = node.handle(2)
        self.checkpoint_name = name

        self.defaults = resolve_generation_defaults(name, self.context, self.lora_count)
        if self.options.generation_defaults:
            self.defaults.update({k: v for k, v in self.options.generation_defaults.items() if v is not None})

        self._explain(f"Load checkpoint model: {name}", node.type, ckpt_name=name)
        return True

    def _dispatch_encode(self, step: EncodeStep) -> bool:
        if self.chain.text_encoder is None:
            self._dispatch_load(LoadStep())
        if step.prompt is not None:
            self.prompt = step.prompt
        if step.negative_prompt is not None:
            self.negative_prompt = step.negative_prompt

        self._encode_conditioning()
        self._explain(f'Encode positive prompt: "{self.prompt}"', "CLIPTextEncode", text=self.prompt)
        self._explain(f'Encode negative prompt: "{self.negative_prompt}"', "CLIPTextEncode",
                      text=self.negative_prompt)
        return True

    def _encode_conditioning(self):
        """(Re)create both conditioning nodes from the active text encoder."""
        clip = self.chain.text_encoder
        positive = self.factory.create_node("CLIPTextEncode", {"text": self.prompt, "clip": clip})
        negative = self.factory.create_node("CLIPTextEncode", {"text": self.negative_prompt, "clip": clip})
        self.chain.positive = positive.handle()
        self.chain.negative = negative.handle()
        return positive, negative

    def _ensure_conditioning(self):
        if self.chain.model is None:
            self._dispatch_load(LoadStep())
        if self.chain.positive is None or self.chain.negative is None:
            self._dispatch_encode(EncodeStep())

    # ------------------------------------------------------------
    # Style adjust (LoRA)
    # ------------------------------------------------------------

    @staticmethod
    def _lora_step(entry: Any) -> Optional[StyleAdjustStep]:
        if isinstance(entry, StyleAdjustStep):
            return entry
        if isinstance(entry, dict):
            return parse_step(dict(entry, action="style_adjust"))
        try:
            name, strength = entry
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed LoRA entry: {entry!r}")
            return None
        return StyleAdjustStep.model_validate({"name": name, "strength": strength})

    def _dispatch_style_adjust(self, step: StyleAdjustStep) -> bool:
        if not step.name:
            logger.warning("Style adjust step without a LoRA name, skipping")
            return False
        self._ensure_conditioning()

        lora_name = ensure_checkpoint_extension(step.name)
        strength_model = _first(step.strength_model, step.strength, 1.0)
        strength_clip = _first(step.strength_clip, step.strength, strength_model)

        node = self.factory.create_node("LoraLoader", {
            "model": self.chain.model,
            "clip": self.chain.text_encoder,
            "lora_name": lora_name,
            "strength_model": strength_model,
            "strength_clip": strength_clip,
        })
        self.chain.model = node.handle(0)
        self.chain.text_encoder = node.handle(1)

        # Conditioning derives from the text encoder and must follow it
        self._encode_conditioning()

        self._explain(f"Apply LoRA: {lora_name} with strength {strength_model}", node.type,
                      lora_name=lora_name, strength_model=strength_model, strength_clip=strength_clip)
        return True

    # ------------------------------------------------------------
    # Guidance (ControlNet)
    # ------------------------------------------------------------

    def _load_image(self, image_name: str) -> Handle:
        handle = self._loaded_images.get(image_name)
        if handle is None:
            node = self.factory.create_node("LoadImage", {"image": image_name})
            handle = node.handle(0)
            self._loaded_images[image_name] = handle
        return handle

    def _dispatch_guidance(self, step: GuidanceStep) -> bool:
        self._ensure_conditioning()

        image_name = step.image
        if not image_name:
            image_name = self.options.reference_image
            logger.warning(f"Guidance step has no reference image, using '{image_name}'")
        image = self._load_image(image_name)

        control_type = (step.type or self.options.controlnet_type).lower()
        control_net_name = step.model or self.options.controlnet_template.format(type=control_type)
        strength = _clamp(_first(step.strength, 1.0), 0.0, 10.0)
        start = _clamp(_first(step.start_percent, 0.0), 0.0, 1.0)
        end = _clamp(_first(step.end_percent, 1.0), start, 1.0)

        loader = self.factory.create_node("ControlNetLoader", {"control_net_name": control_net_name})
        apply = self.factory.create_node("ControlNetApplyAdvanced", {
            "positive": self.chain.positive,
            "negative": self.chain.negative,
            "control_net": loader.handle(),
            "image": image,
            "strength": strength,
            "start_percent": start,
            "end_percent": end,
        })
        self.chain.positive = apply.handle(0)
        self.chain.negative = apply.handle(1)

        self._explain(f"Setup ControlNet {control_type} with strength {strength}", apply.type,
                      control_net_name=control_net_name, image=image_name, strength=strength)
        return True

    # ------------------------------------------------------------
    # Sample + decode
    # ------------------------------------------------------------

    def _dispatch_sample(self, step: SampleStep) -> bool:
        self._ensure_conditioning()
        defaults = self.defaults

        width = step.width if step.width and step.width > 0 else defaults["width"]
        height = step.height if step.height and step.height > 0 else defaults["height"]
        batch_size = step.batch_size if step.batch_size and step.batch_size > 0 else 1
        steps = step.steps if step.steps and step.steps > 0 else defaults["steps"]

        sampler_name, scheduler_hint = normalize_sampler_name(step.sampler)
        if step.sampler and sampler_name is None:
            logger.warning(f"Unknown sampler '{step.sampler}', using {defaults['sampler_name']}")
        sampler_name = sampler_name or defaults["sampler_name"]

        scheduler = (step.scheduler or scheduler_hint or defaults["scheduler"]).lower()
        if scheduler not in SCHEDULER_NAMES:
            logger.warning(f"Unknown scheduler '{scheduler}', using {defaults['scheduler']}")
            scheduler = defaults["scheduler"]

        cfg = _first(step.guidance_scale, defaults["cfg"])
        denoise = _clamp(_first(step.denoise, defaults["denoise"]), 0.0, 1.0)

        latent = self.factory.create_node("EmptyLatentImage", {
            "width": width, "height": height, "batch_size": batch_size,
        })
        sampler = self.factory.create_node("KSampler", {
            "model": self.chain.model,
            "positive": self.chain.positive,
            "negative": self.chain.negative,
            "latent_image": latent.handle(),
            "seed": step.seed,
            "steps": steps,
            "cfg": cfg,
            "sampler_name": sampler_name,
            "scheduler": scheduler,
            "denoise": denoise,
        })
        self.chain.latent = sampler.handle()

        decode = self.factory.create_node("VAEDecode", {
            "samples": self.chain.latent,
            "vae": self.chain.vae,
        })
        self.chain.image = decode.handle()
        self.image_size = (width, height)

        self._explain(f"Generate image using {sampler_name} sampler with {steps} steps", sampler.type,
                      seed=sampler.literal("seed"), steps=steps, cfg=sampler.literal("cfg"),
                      sampler_name=sampler_name, scheduler=scheduler, denoise=denoise,
                      width=width, height=height)
        self._explain("Decode latent to final image", decode.type)
        return True

    # ------------------------------------------------------------
    # Post-process
    # ------------------------------------------------------------

    def _current_size(self) -> Tuple[int, int]:
        if self.image_size:
            return self.image_size
        if self.defaults:
            return self.defaults["width"], self.defaults["height"]
        return 512, 512

    def _dispatch_upscale(self, step: UpscaleStep) -> bool:
        if self.chain.image is None:
            logger.info("Upscale step skipped, no image to upscale")
            return False

        method = (step.method or "").lower()
        width, height = self._current_size()

        if method == "model" or (step.model and not method):
            model_name = step.model or self.options.upscale_model
            loader = self.factory.create_node("UpscaleModelLoader", {"model_name": model_name})
            node = self.factory.create_node("ImageUpscaleWithModel", {
                "upscale_model": loader.handle(),
                "image": self.chain.image,
            })
            factor = upscale_model_factor(model_name)
            params = {"model_name": model_name}
        else:
            factor = step.factor if step.factor and step.factor > 0 else 2.0
            algorithm = step.algorithm if step.algorithm in UPSCALE_METHODS else "nearest-exact"
            node = self.factory.create_node("ImageScale", {
                "image": self.chain.image,
                "upscale_method": algorithm,
                "width": round(width * factor),
                "height": round(height * factor),
                "crop": "disabled",
            })
            params = {"upscale_method": algorithm, "factor": factor}

        self.chain.image = node.handle()
        self.image_size = (round(width * factor), round(height * factor))
        self._explain(f"Upscale image by {factor}x using {method or 'latent'} method", node.type, **params)
        return True

    def _dispatch_effect(self, step: EffectStep) -> bool:
        if self.chain.image is None:
            logger.info("Effect step skipped, no image to apply it to")
            return False

        mode = step.mode if step.mode in BLEND_MODES else "overlay"
        strength = _clamp(_first(step.strength, 0.5), 0.0, 1.0)
        node = self.factory.create_node("ImageBlend", {
            "image1": self.chain.image,
            "image2": self.chain.image,
            "blend_factor": strength,
            "blend_mode": mode,
        })
        self.chain.image = node.handle()

        self._explain(f"Apply {step.type or mode} effect with strength {strength}", node.type,
                      blend_mode=mode, blend_factor=strength)
        return True

    def _explain(self, description: str, node_type: str, **parameters):
        self.explanation.append(ExplanationStep(
            step=len(self.explanation) + 1,
            description=description,
            node_type=node_type,
            parameters=parameters,
        ))


def with_overrides(options: DispatchOptions, **overrides) -> DispatchOptions:
    """Copy of options with the non-None overrides applied."""
    return replace(options, **{k: v for k, v in overrides.items() if v is not None})
