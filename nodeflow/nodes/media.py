"""Node kinds whose work runs in the external task system."""

from __future__ import annotations

from typing import Any

from ..models import Node, NodeKind
from ..tasks.base import CROP_TASK, FRAME_TASK, LLM_TASK
from .base import NodeContext, NodeOutcome, NodeRegistry, NodeSpec, pick

NO_IMAGE = "No image: missing required input 'image_url'"
NO_VIDEO = "No video: missing required input 'video_url'"
NO_PROMPT = "Missing required input: user_message"

CROP_DEFAULTS = {
    "x_percent": 0.0,
    "y_percent": 0.0,
    "width_percent": 100.0,
    "height_percent": 100.0,
}


def _prompt(node: Node, inputs: dict[str, Any]) -> Any:
    return pick(node, inputs, "user_message")


def validate_llm(node: Node, inputs: dict[str, Any]) -> str | None:
    prompt = _prompt(node, inputs)
    if not isinstance(prompt, str) or not prompt.strip():
        return NO_PROMPT
    images = inputs.get("images", node.configuration.get("images") or [])
    if not isinstance(images, list):
        return "llm.images must be a list of image references"
    return None


async def llm_handler(node: Node, inputs: dict[str, Any], context: NodeContext) -> NodeOutcome:
    defaults = context.llm_defaults
    payload = {
        "model": pick(node, {}, "model", defaults.get("model")),
        "system_prompt": pick(node, inputs, "system_prompt", defaults.get("system_prompt", "")),
        "prompt": _prompt(node, inputs),
        "images": list(inputs.get("images", node.configuration.get("images") or [])),
    }
    result = await context.watcher.run(LLM_TASK, payload)
    if result.succeeded:
        response = result.output.get("response") if isinstance(result.output, dict) else result.output
        if isinstance(response, str):
            return NodeOutcome(output=response)
        return NodeOutcome(error="LLM generation failed: task returned no response")
    return NodeOutcome(error=f"LLM generation failed: {result.describe()}")


def _crop_parameters(node: Node, inputs: dict[str, Any]) -> dict[str, float]:
    params: dict[str, float] = {}
    for key, default in CROP_DEFAULTS.items():
        raw = pick(node, inputs, key, default)
        try:
            value = float(raw)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid crop parameter '{key}': {raw!r} is not a number") from None
        if not 0 <= value <= 100:
            raise ValueError(f"Invalid crop parameter '{key}': {value} is outside 0-100")
        params[key] = value
    if params["width_percent"] <= 0 or params["height_percent"] <= 0:
        raise ValueError("Invalid crop parameter: width_percent and height_percent must be greater than 0")
    return params


def validate_crop(node: Node, inputs: dict[str, Any]) -> str | None:
    if not isinstance(pick(node, inputs, "image_url"), str):
        return NO_IMAGE
    try:
        _crop_parameters(node, inputs)
    except ValueError as exc:
        return str(exc)
    return None


async def crop_handler(node: Node, inputs: dict[str, Any], context: NodeContext) -> NodeOutcome:
    params = _crop_parameters(node, inputs)
    payload = {
        "image_url": pick(node, inputs, "image_url"),
        "x": params["x_percent"],
        "y": params["y_percent"],
        "width": params["width_percent"],
        "height": params["height_percent"],
    }
    result = await context.watcher.run(CROP_TASK, payload)
    if result.succeeded:
        if isinstance(result.output, dict) and result.output.get("cropped_url"):
            return NodeOutcome(output=result.output["cropped_url"])
        return NodeOutcome(error="Crop failed: task returned no image")
    return NodeOutcome(error=f"Crop failed: {result.describe()}")


def parse_timestamp(raw: Any) -> str | float:
    """Normalise a frame timestamp to ``"NN%"`` or seconds."""
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("%"):
            try:
                percentage = float(text[:-1])
            except ValueError:
                raise ValueError(f"Invalid timestamp: {raw!r}") from None
            if not 0 <= percentage <= 100:
                raise ValueError(f"Invalid timestamp: {raw!r} is outside 0%-100%")
            return f"{percentage:g}%"
        raw = text
    try:
        seconds = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid timestamp: {raw!r}") from None
    if seconds < 0:
        raise ValueError(f"Invalid timestamp: {raw!r} is negative")
    return seconds


def validate_frame(node: Node, inputs: dict[str, Any]) -> str | None:
    if not isinstance(pick(node, inputs, "video_url"), str):
        return NO_VIDEO
    try:
        parse_timestamp(pick(node, inputs, "timestamp", "50%"))
    except ValueError as exc:
        return str(exc)
    return None


async def frame_handler(node: Node, inputs: dict[str, Any], context: NodeContext) -> NodeOutcome:
    payload = {
        "video_url": pick(node, inputs, "video_url"),
        "timestamp": parse_timestamp(pick(node, inputs, "timestamp", "50%")),
    }
    result = await context.watcher.run(FRAME_TASK, payload)
    if result.succeeded:
        if isinstance(result.output, dict) and result.output.get("frame_url"):
            return NodeOutcome(output=result.output["frame_url"])
        return NodeOutcome(error="Frame extraction failed: task returned no frame")
    return NodeOutcome(error=f"Frame extraction failed: {result.describe()}")


def register_media_nodes(registry: NodeRegistry) -> None:
    registry.register(
        NodeSpec(
            kind=NodeKind.LLM.value,
            description="Generates text from a prompt, optional system prompt and images.",
            handler=llm_handler,
            validator=validate_llm,
        )
    )
    registry.register(
        NodeSpec(
            kind=NodeKind.CROP_IMAGE.value,
            description="Crops an image by percentages of its width and height.",
            handler=crop_handler,
            validator=validate_crop,
        )
    )
    registry.register(
        NodeSpec(
            kind=NodeKind.EXTRACT_FRAME.value,
            description="Extracts a single frame from a video at a percentage or offset in seconds.",
            handler=frame_handler,
            validator=validate_frame,
        )
    )
