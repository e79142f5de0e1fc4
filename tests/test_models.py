"""Test payload parsing for graphs and records."""

from nodeflow.models import ExecuteRequest, Graph, Node, NodeKind, NodeResult, TrackNodeRequest


def test_node_accepts_canvas_field_names():
    node = Node.model_validate({"id": "n1", "type": "cropImage", "data": {"xPercent": 10, "widthPercent": 50}})
    assert node.kind == NodeKind.CROP_IMAGE.value
    assert node.configuration == {"x_percent": 10, "width_percent": 50}
    assert node.last_output is None


def test_node_normalizes_canvas_configuration_keys():
    node = Node.model_validate(
        {
            "id": "n1",
            "type": "llm",
            "data": {"userMessage": "hi", "systemPrompt": "terse", "model": "m", "result": "old"},
        }
    )
    assert node.configuration == {"user_message": "hi", "system_prompt": "terse", "model": "m", "result": "old"}


def test_snake_case_configuration_wins_over_camel_case():
    node = Node.model_validate({"id": "n1", "kind": "upload-image", "data": {"imageUrl": "a", "image_url": "b"}})
    assert node.configuration == {"image_url": "b"}


def test_null_configuration_is_empty():
    assert Node.model_validate({"id": "n1", "kind": "text", "data": None}).configuration == {}


def test_node_keeps_unknown_kinds():
    node = Node.model_validate({"id": "n1", "kind": "teleport"})
    assert node.kind == "teleport"


def test_node_accepts_enum_kind():
    node = Node(id="n1", kind=NodeKind.LLM)
    assert node.kind == "llm"


def test_edge_aliases_and_default_ports():
    graph = Graph.model_validate(
        {
            "nodes": [{"id": "a", "kind": "text"}, {"id": "b", "kind": "llm"}],
            "edges": [
                {"source": "a", "target": "b", "sourceHandle": None, "targetHandle": "user_message"},
                {"sourceNodeId": "a", "targetNodeId": "b"},
            ],
        }
    )
    first, second = graph.edges
    assert first.source_node_id == "a"
    assert first.source_port == "output"
    assert first.target_port == "user_message"
    assert second.target_port == "input"
    assert first.id and second.id and first.id != second.id


def test_graph_helpers():
    graph = Graph.model_validate(
        {
            "nodes": [{"id": "a", "kind": "text"}, {"id": "b", "kind": "text"}],
            "edges": [{"source_node_id": "a", "target_node_id": "b"}],
        }
    )
    assert graph.node_ids() == ["a", "b"]
    assert graph.get_node("b").id == "b"
    assert graph.get_node("c") is None
    assert len(graph.incoming("b")) == 1
    assert graph.outgoing("b") == []


def test_execute_request_allows_missing_edges():
    request = ExecuteRequest.model_validate({"workflowId": "wf", "nodes": [], "edges": None})
    assert request.workflow_id == "wf"
    assert request.edges == []


def test_node_result_success_flag():
    assert NodeResult(node_id="a", output="x").succeeded
    assert not NodeResult(node_id="a", error="boom").succeeded


def test_track_request_normalizes_status():
    request = TrackNodeRequest.model_validate(
        {"workflowId": "wf", "nodeId": "n1", "nodeType": "llm", "status": "FAILED", "duration": 12}
    )
    assert request.status == "failed"
    assert request.node_kind == "llm"
    assert request.duration_ms == 12
