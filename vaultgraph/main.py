import logging
from typing import Any, Dict, Optional, Union

from vaultgraph.processing_layer.content_graph import ContentGraphEngine
from vaultgraph.processing_layer.graph_builder import GraphBuilder
from vaultgraph.protocol_layer.dispatcher import Dispatcher
from vaultgraph.protocol_layer.messages import ready_notification
from vaultgraph.retrieval_layer.search_engine import SearchEngine
from vaultgraph.utils.config_handler import ConfigHandler
from vaultgraph.utils.logger import setup_logger

logger = logging.getLogger(__name__)


class GraphWorker:
    """One engine process: a single graph, a single inbound queue.

    Requests are handled strictly one after another, so the graph needs no
    locking. The worker computes every request to completion; a caller that
    stops waiting simply ignores the late reply.
    """

    def __init__(self, config: Union[ConfigHandler, str, None] = None):
        """Initialize the engines and the dispatcher that routes to them."""
        if not isinstance(config, ConfigHandler):
            config = ConfigHandler(config)
        self.config = config

        self.graph = GraphBuilder()
        self.search_engine = SearchEngine()
        self.content_graph = ContentGraphEngine(
            preview_length=config.get('content_graph.preview_length', 150),
            backlink_weight=config.get('content_graph.backlink_weight', 1.0),
            tag_weight=config.get('content_graph.tag_weight', 0.7),
        )
        self.dispatcher = Dispatcher(self.graph, self.search_engine, self.content_graph, config)

    def handle(self, message: Any) -> Dict[str, Any]:
        """Handle one request and return its reply. Never raises."""
        return self.dispatcher.dispatch(message)

    def serve(self, inbound, outbound) -> int:
        """
        Process requests until the ``None`` sentinel arrives.

        The readiness notification is put on ``outbound`` before the first
        request is read.

        Args:
            inbound: Queue-like object with a blocking ``get()``
            outbound: Queue-like object with ``put()``

        Returns:
            Number of requests handled
        """
        outbound.put(ready_notification())
        logger.info("Graph worker ready")

        handled = 0
        while True:
            message = inbound.get()
            if message is None:
                break
            outbound.put(self.handle(message))
            handled += 1

        logger.info(f"Graph worker stopping after {handled} requests")
        return handled


def run_worker(inbound, outbound, config: Optional[Union[Dict[str, Any], str]] = None) -> None:
    """
    Process entry point for a graph worker.

    Args:
        inbound: Queue the host puts requests on
        outbound: Queue the worker puts replies on
        config: Configuration overrides as a dict, a path to a YAML file, or None
    """
    if isinstance(config, dict):
        handler = ConfigHandler.from_dict(config)
    else:
        handler = ConfigHandler(config)
    setup_logger(handler)
    GraphWorker(handler).serve(inbound, outbound)
