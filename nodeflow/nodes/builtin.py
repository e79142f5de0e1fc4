from __future__ import annotations

from typing import Any

from ..models import Node, NodeKind
from .base import NodeContext, NodeOutcome, NodeRegistry, NodeSpec
from .media import register_media_nodes

NO_FILE = "No file uploaded"


async def text_handler(node: Node, _inputs: dict[str, Any], _context: NodeContext) -> NodeOutcome:
    text = node.configuration.get("text")
    return NodeOutcome(output=text if isinstance(text, str) else "")


def _reference_validator(key: str):
    def _validate(node: Node, _inputs: dict[str, Any]) -> str | None:
        value = node.configuration.get(key)
        if not isinstance(value, str) or not value:
            return NO_FILE
        return None

    return _validate


def _reference_handler(key: str):
    async def _handle(node: Node, _inputs: dict[str, Any], _context: NodeContext) -> NodeOutcome:
        return NodeOutcome(output=node.configuration[key])

    return _handle


def register_builtin_nodes(registry: NodeRegistry) -> None:
    registry.register(
        NodeSpec(
            kind=NodeKind.TEXT.value,
            description="Passes its configured text to downstream nodes.",
            handler=text_handler,
        )
    )
    registry.register(
        NodeSpec(
            kind=NodeKind.UPLOAD_IMAGE.value,
            description="Passes the reference of an already uploaded image.",
            handler=_reference_handler("image_url"),
            validator=_reference_validator("image_url"),
        )
    )
    registry.register(
        NodeSpec(
            kind=NodeKind.UPLOAD_VIDEO.value,
            description="Passes the reference of an already uploaded video.",
            handler=_reference_handler("video_url"),
            validator=_reference_validator("video_url"),
        )
    )
    register_media_nodes(registry)
