import logging
from typing import Any, Callable, Dict

from vaultgraph.processing_layer.content_graph import ContentGraphEngine
from vaultgraph.processing_layer.graph_builder import GraphBuilder
from vaultgraph.processing_layer.neighborhood import analyze_neighborhood
from vaultgraph.protocol_layer.messages import (
    PAYLOAD_MODELS,
    MessageType,
    Request,
    Response,
    parse_request,
)
from vaultgraph.retrieval_layer.search_engine import SearchEngine
from vaultgraph.utils.config_handler import ConfigHandler
from vaultgraph.utils.error_handler import ConfigurationError, EngineError

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes one request to the engine that serves it and wraps the outcome.

    ``dispatch`` never raises: every failure, including an unknown message
    type or a malformed payload, comes back as a ``success: False`` reply
    carrying the request's id.
    """

    def __init__(
        self,
        graph: GraphBuilder,
        search_engine: SearchEngine,
        content_graph: ContentGraphEngine,
        config: ConfigHandler
    ):
        self.graph = graph
        self.search_engine = search_engine
        self.content_graph = content_graph
        self.config = config

        self._handlers: Dict[MessageType, Callable[[Any], Any]] = {
            MessageType.BUILD_GRAPH: self._build_graph,
            MessageType.UPDATE_NODE: self._update_node,
            MessageType.REMOVE_NODE: self._remove_node,
            MessageType.GET_GRAPH_SIZE: self._get_graph_size,
            MessageType.COMPUTE_PAGERANK: self._compute_pagerank,
            MessageType.SPREADING_ACTIVATION: self._spreading_activation,
            MessageType.ANALYZE_NEIGHBORHOOD: self._analyze_neighborhood,
            MessageType.SEARCH_CONTENT: self._search_content,
            MessageType.UPDATE_METADATA: self._update_metadata,
            MessageType.ANALYZE_GRAPH: self._analyze_graph,
            MessageType.READY: self._ready,
        }
        missing = [t.value for t in MessageType if t not in self._handlers or t not in PAYLOAD_MODELS]
        if missing:
            raise ConfigurationError("Message types without a handler or payload model",
                                     details={"missing": missing})

    def dispatch(self, message: Any) -> Dict[str, Any]:
        """
        Handle one raw request and build its reply.

        Args:
            message: Request of the form {"id", "type", "payload"}

        Returns:
            Reply of the form {"id", "success", "data"} or {"id", "success", "error"}
        """
        request_id = message.get('id') if isinstance(message, dict) else None
        raw_type = message.get('type') if isinstance(message, dict) else None
        context = {'request_id': request_id, 'request_type': raw_type}
        try:
            request = parse_request(message)
            data = self.handle(request)
            logger.debug("Request handled", extra=context)
            return Response.ok(request_id, data).to_message()
        except EngineError as e:
            logger.warning(f"Request failed: {str(e)}", extra=context)
            return Response.fail(request_id, str(e)).to_message()
        except Exception as e:
            logger.error(f"Unexpected error handling request: {str(e)}", exc_info=True, extra=context)
            return Response.fail(request_id, str(e) or type(e).__name__).to_message()

    def handle(self, request: Request) -> Any:
        """Run the handler for an already parsed request."""
        return self._handlers[request.type](request.payload)

    @staticmethod
    def _pick(value: Any, fallback: Any) -> Any:
        return fallback if value is None else value

    @staticmethod
    def _or_default(value: Any, fallback: Any) -> Any:
        # Algorithm options treat 0 like an omitted value.
        return value or fallback

    def _build_graph(self, payload) -> Dict[str, int]:
        return self.graph.build(payload.nodes, payload.edges)

    def _update_node(self, payload) -> Dict[str, int]:
        return self.graph.update_node(payload.node, payload.edges)

    def _remove_node(self, payload) -> Dict[str, Any]:
        removed = self.graph.remove_node(payload.path)
        size = self.graph.get_size()
        return {'removed': removed, 'order': size['nodes'], 'size': size['edges']}

    def _get_graph_size(self, payload) -> Dict[str, int]:
        return self.graph.get_size()

    def _compute_pagerank(self, payload) -> Dict[str, Any]:
        scores = self.graph.compute_pagerank(
            damping=self._or_default(payload.damping, self.config.get('pagerank.damping', 0.85)),
            tolerance=self._or_default(payload.tolerance, self.config.get('pagerank.tolerance', 1e-4)),
            max_iterations=self._or_default(payload.max_iterations, self.config.get('pagerank.max_iterations', 100)),
        )
        return {'scores': scores}

    def _spreading_activation(self, payload) -> Dict[str, Any]:
        activated = self.graph.spreading_activation(
            payload.start_node,
            decay=self._or_default(payload.decay, self.config.get('activation.decay', 0.5)),
            initial=self._or_default(payload.initial, self.config.get('activation.initial', 1.0)),
            threshold=self._or_default(payload.threshold, self.config.get('activation.threshold', 0.01)),
        )
        return {'activatedNodes': activated}

    def _analyze_neighborhood(self, payload) -> Dict[str, Any]:
        return analyze_neighborhood(
            payload.start_node,
            payload.links,
            payload.all_files,
            max_depth=self._pick(payload.max_depth, self.config.get('neighborhood.max_depth', 2)),
        )

    def _search_content(self, payload) -> Dict[str, Any]:
        corpus = [(entry.path, entry.content) for entry in payload.file_contents]
        return self.search_engine.search(payload.query, corpus, fuzzy=payload.fuzzy)

    def _update_metadata(self, payload) -> Dict[str, int]:
        return self.content_graph.initialize_index(entry.model_dump() for entry in payload.files)

    def _analyze_graph(self, payload) -> Dict[str, Any]:
        all_files = None
        if payload.all_files is not None:
            all_files = [entry.model_dump() for entry in payload.all_files]
        result = self.content_graph.analyze_graph(
            payload.root_file_path,
            self._pick(payload.max_hops, self.config.get('content_graph.max_hops', 2)),
            all_files=all_files,
        )
        limit = self._pick(payload.limit, self.config.get('content_graph.top_related_limit', 5))
        result['relatedNotes'] = self.content_graph.get_top_related_notes(result, limit=limit)
        return result

    def _ready(self, payload) -> Dict[str, str]:
        return {'status': 'ready'}
