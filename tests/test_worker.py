import queue

import pytest

from vaultgraph.main import GraphWorker
from vaultgraph.protocol_layer.messages import READY_ID, READY_STATUS
from vaultgraph.transport_layer.worker_client import WorkerClient
from vaultgraph.utils.error_handler import WorkerNotInitializedError, WorkerRequestError


def test_serve_announces_readiness_then_replies_in_order(vault_nodes, vault_edges):
    """Test the worker loop: ready notification first, one reply per request, sentinel stops it."""
    inbound, outbound = queue.Queue(), queue.Queue()
    inbound.put({"id": 1, "type": "BUILD_GRAPH", "payload": {"nodes": vault_nodes, "edges": vault_edges}})
    inbound.put({"id": 2, "type": "GET_GRAPH_SIZE", "payload": {}})
    inbound.put({"id": 3, "type": "NOPE", "payload": {}})
    inbound.put(None)

    handled = GraphWorker().serve(inbound, outbound)

    replies = [outbound.get_nowait() for _ in range(outbound.qsize())]
    assert handled == 3
    assert replies[0] == {"id": READY_ID, "success": True, "data": {"status": READY_STATUS}}
    assert [r["id"] for r in replies[1:]] == [1, 2, 3]
    assert replies[2]["data"] == {"nodes": 5, "edges": 6}
    assert replies[3]["success"] is False


def test_client_without_process_rejects_requests():
    client = WorkerClient(autostart=False, heartbeat_interval=0)

    assert client.is_ready is False
    with pytest.raises(WorkerNotInitializedError):
        client.get_graph_size()


def test_unknown_response_ids_are_ignored():
    client = WorkerClient(autostart=False, heartbeat_interval=0)

    client._handle_response({"id": "stray", "success": True, "data": {}})

    assert client._pending == {}


@pytest.fixture(scope="module")
def client():
    """Fixture running a real worker process for the whole module."""
    worker_client = WorkerClient(heartbeat_interval=0, request_timeout=60)
    try:
        yield worker_client
    finally:
        worker_client.terminate()


def test_client_round_trip(client, vault_nodes, vault_edges):
    """Test requests through a spawned worker process."""
    assert client.wait_until_ready(timeout=60)

    assert client.build_graph(vault_nodes, vault_edges) == {"order": 5, "size": 6}
    scores = client.compute_pagerank(max_iterations=50)["scores"]
    assert sum(scores.values()) == pytest.approx(1.0, abs=1e-6)

    activated = client.spreading_activation("index.md")["activatedNodes"]
    assert [entry["path"] for entry in activated] == ["alpha.md", "beta.md", "gamma.md"]

    results = client.search_content("cat", [{"path": "a.md", "content": "a cat"}])
    assert results["totalMatches"] == 1
    assert client.ping() == {"status": "ready"}


def test_client_surfaces_worker_failures(client):
    assert client.wait_until_ready(timeout=60)

    with pytest.raises(WorkerRequestError, match="Unknown message type"):
        client.send_message("DEFRAGMENT")
    # The worker keeps serving after a failed request
    assert "nodes" in client.get_graph_size()


def test_client_after_terminate():
    worker_client = WorkerClient(heartbeat_interval=0, request_timeout=60)
    assert worker_client.wait_until_ready(timeout=60)

    worker_client.terminate()

    with pytest.raises(WorkerNotInitializedError):
        worker_client.get_graph_size()
