"""
Message protocol between a host and the engine worker.

A request is ``{"id", "type", "payload"}``; a reply is ``{"id", "success",
"data"}`` or ``{"id", "success": False, "error"}``. The id is chosen by the
caller and echoed back untouched. Right after start-up the worker emits one
unsolicited reply under READY_ID so the host knows it is alive.

Each MessageType has exactly one payload model in PAYLOAD_MODELS. Payload
keys are camelCase on the wire and snake_case in Python.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from vaultgraph.utils.error_handler import PayloadError, UnknownMessageTypeError

READY_ID = "__INIT__"
READY_STATUS = "Worker initialized and ready"


class MessageType(str, Enum):
    BUILD_GRAPH = "BUILD_GRAPH"
    UPDATE_NODE = "UPDATE_NODE"
    REMOVE_NODE = "REMOVE_NODE"
    GET_GRAPH_SIZE = "GET_GRAPH_SIZE"
    COMPUTE_PAGERANK = "COMPUTE_PAGERANK"
    SPREADING_ACTIVATION = "SPREADING_ACTIVATION"
    ANALYZE_NEIGHBORHOOD = "ANALYZE_NEIGHBORHOOD"
    SEARCH_CONTENT = "SEARCH_CONTENT"
    UPDATE_METADATA = "UPDATE_METADATA"
    ANALYZE_GRAPH = "ANALYZE_GRAPH"
    READY = "READY"


# Older hosts still send these names.
MESSAGE_TYPE_ALIASES = {
    "WORKER_READY": MessageType.READY,
    "ANALYZE_RESOLVED_GRAPH": MessageType.ANALYZE_NEIGHBORHOOD,
}


class Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class BuildGraphPayload(Payload):
    # Entries stay loosely typed: the graph engine skips bad ones one by one.
    nodes: List[Any] = Field(default_factory=list)
    edges: List[Any] = Field(default_factory=list)


class UpdateNodePayload(Payload):
    node: Dict[str, Any]
    edges: List[Any] = Field(default_factory=list)


class RemoveNodePayload(Payload):
    path: str


class EmptyPayload(Payload):
    pass


class ComputePageRankPayload(Payload):
    damping: Optional[float] = None
    tolerance: Optional[float] = None
    max_iterations: Optional[int] = Field(default=None, alias='maxIterations')


class SpreadingActivationPayload(Payload):
    start_node: str = Field(alias='startNode')
    decay: Optional[float] = None
    initial: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices('initial', 'initialEnergy')
    )
    threshold: Optional[float] = None


class AnalyzeNeighborhoodPayload(Payload):
    start_node: str = Field(alias='startNode')
    links: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    all_files: List[str] = Field(default_factory=list, alias='allFiles')
    max_depth: Optional[int] = Field(default=None, alias='maxDepth', ge=0)


class FileContent(Payload):
    path: str
    content: str = ''


class SearchContentPayload(Payload):
    query: str
    file_contents: List[FileContent] = Field(default_factory=list, alias='fileContents')
    fuzzy: bool = False


class IndexedFile(Payload):
    path: str
    content: str = ''
    title: Optional[str] = None


class UpdateMetadataPayload(Payload):
    files: List[IndexedFile] = Field(default_factory=list)


class AnalyzeGraphPayload(Payload):
    root_file_path: str = Field(alias='rootFilePath')
    max_hops: Optional[int] = Field(default=None, alias='maxHops', ge=0)
    all_files: Optional[List[IndexedFile]] = Field(default=None, alias='allFiles')
    limit: Optional[int] = Field(default=None, ge=0)


PAYLOAD_MODELS: Dict[MessageType, Type[Payload]] = {
    MessageType.BUILD_GRAPH: BuildGraphPayload,
    MessageType.UPDATE_NODE: UpdateNodePayload,
    MessageType.REMOVE_NODE: RemoveNodePayload,
    MessageType.GET_GRAPH_SIZE: EmptyPayload,
    MessageType.COMPUTE_PAGERANK: ComputePageRankPayload,
    MessageType.SPREADING_ACTIVATION: SpreadingActivationPayload,
    MessageType.ANALYZE_NEIGHBORHOOD: AnalyzeNeighborhoodPayload,
    MessageType.SEARCH_CONTENT: SearchContentPayload,
    MessageType.UPDATE_METADATA: UpdateMetadataPayload,
    MessageType.ANALYZE_GRAPH: AnalyzeGraphPayload,
    MessageType.READY: EmptyPayload,
}


class Request(BaseModel):
    id: Any
    type: MessageType
    payload: Payload


class Response(BaseModel):
    id: Any
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, request_id: Any, data: Any) -> 'Response':
        return cls(id=request_id, success=True, data=data)

    @classmethod
    def fail(cls, request_id: Any, error: str) -> 'Response':
        return cls(id=request_id, success=False, error=error or 'Unknown error')

    def to_message(self) -> Dict[str, Any]:
        """Plain dict for the wire: "data" on success, "error" on failure."""
        message = {'id': self.id, 'success': self.success}
        if self.success:
            message['data'] = self.data
        else:
            message['error'] = self.error
        return message


def resolve_type(raw_type: Any) -> MessageType:
    if isinstance(raw_type, MessageType):
        return raw_type
    if isinstance(raw_type, str) and raw_type in MESSAGE_TYPE_ALIASES:
        return MESSAGE_TYPE_ALIASES[raw_type]
    try:
        return MessageType(raw_type)
    except ValueError:
        raise UnknownMessageTypeError(f"Unknown message type: {raw_type}",
                                      details={"type": raw_type}) from None


def parse_request(message: Dict[str, Any]) -> Request:
    """
    Turn a raw request dict into a typed Request.

    Raises:
        UnknownMessageTypeError: If "type" names no known message type
        PayloadError: If the message or its payload is malformed
    """
    if not isinstance(message, dict):
        raise PayloadError(f"Request must be an object, got {type(message).__name__}")
    message_type = resolve_type(message.get('type'))
    raw_payload = message.get('payload')
    if raw_payload is None:
        raw_payload = {}
    try:
        payload = PAYLOAD_MODELS[message_type].model_validate(raw_payload)
    except ValidationError as e:
        raise PayloadError(f"Invalid {message_type.value} payload: {_summarize(e)}",
                           details={"errors": e.errors(include_url=False)}) from e
    return Request(id=message.get('id'), type=message_type, payload=payload)


def ready_notification() -> Dict[str, Any]:
    """The unsolicited reply a worker emits once before handling any request."""
    return Response.ok(READY_ID, {'status': READY_STATUS}).to_message()


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors(include_url=False):
        location = '.'.join(str(part) for part in item.get('loc', ())) or 'payload'
        parts.append(f"{location}: {item.get('msg')}")
    return '; '.join(parts)
