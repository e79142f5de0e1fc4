from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NodeKind(str, Enum):
    TEXT = "text"
    UPLOAD_IMAGE = "upload-image"
    UPLOAD_VIDEO = "upload-video"
    LLM = "llm"
    CROP_IMAGE = "crop-image"
    EXTRACT_FRAME = "extract-frame"


# Spellings used by the canvas when it serialises nodes.
KIND_ALIASES = {
    "uploadImage": NodeKind.UPLOAD_IMAGE.value,
    "uploadVideo": NodeKind.UPLOAD_VIDEO.value,
    "cropImage": NodeKind.CROP_IMAGE.value,
    "extractFrame": NodeKind.EXTRACT_FRAME.value,
}

# Configuration keys the canvas writes in camelCase.
CONFIG_ALIASES = {
    "imageUrl": "image_url",
    "videoUrl": "video_url",
    "userMessage": "user_message",
    "systemPrompt": "system_prompt",
    "xPercent": "x_percent",
    "yPercent": "y_percent",
    "widthPercent": "width_percent",
    "heightPercent": "height_percent",
}


class Node(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    kind: str = Field(validation_alias=AliasChoices("kind", "type"))
    configuration: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("configuration", "data"),
    )
    last_output: Any = Field(
        default=None,
        validation_alias=AliasChoices("last_output", "lastOutput"),
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, NodeKind):
            return value.value
        if isinstance(value, str):
            return KIND_ALIASES.get(value, value)
        return value

    @field_validator("configuration", mode="before")
    @classmethod
    def _normalize_configuration(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            return value
        normalized = {key: item for key, item in value.items() if key not in CONFIG_ALIASES}
        # An explicit snake_case key wins over its camelCase spelling.
        for key, item in value.items():
            if key in CONFIG_ALIASES:
                normalized.setdefault(CONFIG_ALIASES[key], item)
        return normalized


class Edge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    source_node_id: str = Field(
        validation_alias=AliasChoices("source_node_id", "sourceNodeId", "source"),
    )
    source_port: str = Field(
        default="output",
        validation_alias=AliasChoices("source_port", "sourcePort", "sourceHandle"),
    )
    target_node_id: str = Field(
        validation_alias=AliasChoices("target_node_id", "targetNodeId", "target"),
    )
    target_port: str = Field(
        default="input",
        validation_alias=AliasChoices("target_port", "targetPort", "targetHandle"),
    )

    @field_validator("source_port", "target_port", mode="before")
    @classmethod
    def _default_port(cls, value: Any, info: ValidationInfo) -> Any:
        # The canvas sends null handles for single-port nodes.
        if value is None:
            return "output" if info.field_name == "source_port" else "input"
        return value


class Graph(BaseModel):
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    @field_validator("edges", mode="before")
    @classmethod
    def _none_edges(cls, value: Any) -> Any:
        return [] if value is None else value

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.target_node_id == node_id]

    def outgoing(self, node_id: str) -> list[Edge]:
        return [edge for edge in self.edges if edge.source_node_id == node_id]


class Workflow(Graph):
    id: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)


class ExecuteRequest(Graph):
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("workflow_id", "workflowId"),
    )


class NodeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    node_id: str
    output: Any = None
    error: str | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RunSummary(BaseModel):
    success: bool
    node_results: dict[str, NodeResult] = Field(default_factory=dict)
    total_duration_ms: int = 0
    error: str | None = None


class NodeExecutionRecord(BaseModel):
    id: str
    node_id: str
    node_kind: str
    status: str
    inputs: Any = None
    outputs: Any = None
    error: str | None = None
    duration_ms: int | None = None
    completed_at: datetime | None = None


class RunRecord(BaseModel):
    id: str
    workflow_id: str
    status: str
    scope: str
    started_at: datetime
    finished_at: datetime | None = None
    duration_ms: int | None = None
    error: str | None = None
    node_executions: list[NodeExecutionRecord] = Field(default_factory=list)


class TrackNodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workflow_id: str = Field(validation_alias=AliasChoices("workflow_id", "workflowId"))
    node_id: str = Field(validation_alias=AliasChoices("node_id", "nodeId"))
    node_kind: str = Field(validation_alias=AliasChoices("node_kind", "nodeType", "node_type"))
    status: str = "success"
    inputs: Any = None
    outputs: Any = None
    error: str | None = None
    duration_ms: int | None = Field(
        default=None,
        validation_alias=AliasChoices("duration_ms", "duration"),
    )

    @field_validator("status", mode="before")
    @classmethod
    def _lower_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value
