import time
import uuid
import logging
import threading
import multiprocessing
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, Iterable, List, Optional, Union

from vaultgraph.main import run_worker
from vaultgraph.protocol_layer.messages import READY_ID, MessageType
from vaultgraph.utils.config_handler import ConfigHandler
from vaultgraph.utils.error_handler import (
    WorkerError,
    WorkerNotInitializedError,
    WorkerRequestError,
    WorkerTimeoutError,
)

logger = logging.getLogger(__name__)


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


class WorkerClient:
    """Host-side bridge to a graph worker running in its own process.

    Every request gets a fresh UUID and a Future that the reader thread
    resolves when the matching reply arrives. Requests sent before the
    worker's readiness notification are held back and flushed, in order,
    once it arrives.

    Usage:
        with WorkerClient() as client:
            client.build_graph(nodes, edges)
            scores = client.compute_pagerank()["scores"]
    """

    def __init__(
        self,
        config: Union[ConfigHandler, str, None] = None,
        request_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        autostart: bool = True
    ):
        """
        Initialize the client and, unless ``autostart`` is False, the worker.

        Args:
            config: A ConfigHandler or a path to a configuration file
            request_timeout: Seconds to wait for a reply (default: worker.request_timeout)
            heartbeat_interval: Seconds between liveness checks; 0 disables them
                (default: worker.heartbeat_interval)
            autostart: Start the worker process immediately
        """
        if not isinstance(config, ConfigHandler):
            config = ConfigHandler(config)
        self.config = config
        self.request_timeout = request_timeout if request_timeout is not None else config.get('worker.request_timeout', 30)
        self.ready_timeout = config.get('worker.ready_timeout', 30)
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None else config.get('worker.heartbeat_interval', 10)
        )
        self.max_heartbeat_failures = config.get('worker.max_heartbeat_failures', 2)

        self._context = multiprocessing.get_context('spawn')
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._pending: Dict[str, Future] = {}
        self._backlog: List[Dict[str, Any]] = []
        self._process = None
        self._inbound = None
        self._outbound = None
        self._reader = None
        self._heartbeat = None
        self._heartbeat_stop = threading.Event()
        self._heartbeat_failures = 0

        if autostart:
            self.start()

    def __enter__(self) -> 'WorkerClient':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def start(self) -> None:
        """Spawn the worker process and the thread that reads its replies."""
        with self._lock:
            if self._process is not None:
                return
            self._inbound = self._context.Queue()
            self._outbound = self._context.Queue()
            self._ready.clear()
            self._process = self._context.Process(
                target=run_worker,
                args=(self._inbound, self._outbound, self.config.as_dict()),
                name='vaultgraph-worker',
                daemon=True
            )
            self._process.start()
            self._reader = threading.Thread(
                target=self._read_responses,
                args=(self._outbound,),
                name='vaultgraph-reader',
                daemon=True
            )
            self._reader.start()
        logger.info(f"Started graph worker process {self._process.pid}")

        if self.heartbeat_interval and self._heartbeat is None:
            self._heartbeat_stop.clear()
            self._heartbeat = threading.Thread(target=self._heartbeat_loop, name='vaultgraph-heartbeat', daemon=True)
            self._heartbeat.start()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker has announced itself. Returns False on timeout."""
        return self._ready.wait(self.ready_timeout if timeout is None else timeout)

    def _read_responses(self, outbound) -> None:
        while True:
            try:
                message = outbound.get()
            except (EOFError, OSError):
                break
            if message is None:
                break
            self._handle_response(message)

    def _handle_response(self, message: Dict[str, Any]) -> None:
        request_id = message.get('id')

        if request_id == READY_ID:
            with self._lock:
                backlog, self._backlog = self._backlog, []
                for queued in backlog:
                    self._inbound.put(queued)
                self._ready.set()
            logger.info(f"Graph worker ready, flushed {len(backlog)} queued requests")
            return

        with self._lock:
            future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning(f"Received response for unknown request: {request_id}")
            return
        if future.done():
            return

        if message.get('success'):
            future.set_result(message.get('data'))
        else:
            future.set_exception(WorkerRequestError(
                message.get('error') or 'Unknown worker error',
                details={'id': request_id}
            ))

    def send_message(
        self,
        message_type: Union[MessageType, str],
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """
        Send one request and wait for its reply.

        Args:
            message_type: Type of the request
            payload: Request payload
            timeout: Seconds to wait (default: the client's request timeout)

        Returns:
            The reply's "data"

        Raises:
            WorkerNotInitializedError: If the worker is not running
            WorkerRequestError: If the worker reports a failure
            WorkerTimeoutError: If no reply arrives in time
        """
        type_name = message_type.value if isinstance(message_type, MessageType) else message_type
        message = {
            'id': str(uuid.uuid4()),
            'type': type_name,
            'payload': payload or {},
            'timestamp': int(time.time() * 1000),
        }
        future = Future()

        with self._lock:
            if self._process is None:
                raise WorkerNotInitializedError("Worker not initialized")
            self._pending[message['id']] = future
            if self._ready.is_set():
                self._inbound.put(message)
            else:
                self._backlog.append(message)

        wait = self.request_timeout if timeout is None else timeout
        try:
            return future.result(timeout=wait)
        except FutureTimeoutError:
            with self._lock:
                self._pending.pop(message['id'], None)
                self._backlog = [queued for queued in self._backlog if queued['id'] != message['id']]
            raise WorkerTimeoutError(f"Worker request timeout: {type_name}",
                                     details={'id': message['id'], 'timeout': wait}) from None

    def _heartbeat_loop(self) -> None:
        while not self._heartbeat_stop.wait(self.heartbeat_interval):
            if self.is_ready:
                self.check_health()

    def check_health(self) -> bool:
        """
        Ping the worker. Repeated failures restart it.

        Returns:
            True if the worker answered
        """
        try:
            self.ping()
            self._heartbeat_failures = 0
            return True
        except WorkerError as e:
            self._heartbeat_failures += 1
            logger.warning(f"Heartbeat failed ({self._heartbeat_failures}): {str(e)}")
            if self._heartbeat_failures >= self.max_heartbeat_failures:
                self._heartbeat_failures = 0
                self.restart()
            return False

    def _stop_process(self, grace: float = 5.0) -> None:
        with self._lock:
            process, inbound, outbound, reader = self._process, self._inbound, self._outbound, self._reader
            pending, self._pending = self._pending, {}
            self._process = self._inbound = self._outbound = self._reader = None
            self._backlog = []
            self._ready.clear()

        for future in pending.values():
            if not future.done():
                future.set_exception(WorkerError("Worker terminated"))

        if process is None:
            return
        try:
            inbound.put(None)
            process.join(timeout=grace)
        finally:
            if process.is_alive():
                process.terminate()
                process.join()
            outbound.put(None)
            if reader is not None and reader is not threading.current_thread():
                reader.join(timeout=grace)
            inbound.close()
            outbound.close()
        logger.info("Graph worker terminated")

    def terminate(self) -> None:
        """Stop the heartbeat and the worker; pending requests fail."""
        self._heartbeat_stop.set()
        heartbeat, self._heartbeat = self._heartbeat, None
        self._stop_process()
        if heartbeat is not None and heartbeat is not threading.current_thread():
            heartbeat.join(timeout=1.0)

    def restart(self) -> None:
        """Replace the worker process with a fresh one (the graph starts empty)."""
        logger.warning("Restarting graph worker")
        self._stop_process()
        self.start()

    # Typed requests

    def ping(self) -> Dict[str, str]:
        return self.send_message(MessageType.READY)

    def build_graph(self, nodes: Iterable[Dict[str, Any]], edges: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        return self.send_message(MessageType.BUILD_GRAPH, {'nodes': list(nodes), 'edges': list(edges)})

    def update_node(self, node: Dict[str, Any], edges: Iterable[Dict[str, Any]] = ()) -> Dict[str, int]:
        return self.send_message(MessageType.UPDATE_NODE, {'node': node, 'edges': list(edges)})

    def remove_node(self, path: str) -> Dict[str, Any]:
        return self.send_message(MessageType.REMOVE_NODE, {'path': path})

    def get_graph_size(self) -> Dict[str, int]:
        return self.send_message(MessageType.GET_GRAPH_SIZE)

    def compute_pagerank(
        self,
        damping: Optional[float] = None,
        tolerance: Optional[float] = None,
        max_iterations: Optional[int] = None
    ) -> Dict[str, Any]:
        return self.send_message(MessageType.COMPUTE_PAGERANK, _compact({
            'damping': damping,
            'tolerance': tolerance,
            'maxIterations': max_iterations,
        }))

    def spreading_activation(
        self,
        start_node: str,
        decay: Optional[float] = None,
        initial: Optional[float] = None,
        threshold: Optional[float] = None
    ) -> Dict[str, Any]:
        return self.send_message(MessageType.SPREADING_ACTIVATION, _compact({
            'startNode': start_node,
            'decay': decay,
            'initial': initial,
            'threshold': threshold,
        }))

    def analyze_neighborhood(
        self,
        start_node: str,
        links: Dict[str, Dict[str, Any]],
        all_files: Iterable[str],
        max_depth: Optional[int] = None
    ) -> Dict[str, Any]:
        return self.send_message(MessageType.ANALYZE_NEIGHBORHOOD, _compact({
            'startNode': start_node,
            'links': links,
            'allFiles': list(all_files),
            'maxDepth': max_depth,
        }))

    def search_content(self, query: str, file_contents: Iterable[Dict[str, str]], fuzzy: bool = False) -> Dict[str, Any]:
        return self.send_message(MessageType.SEARCH_CONTENT, {
            'query': query,
            'fileContents': list(file_contents),
            'fuzzy': fuzzy,
        })

    def update_metadata(self, files: Iterable[Dict[str, Any]]) -> Dict[str, int]:
        return self.send_message(MessageType.UPDATE_METADATA, {'files': list(files)})

    def analyze_graph(
        self,
        root_file_path: str,
        max_hops: Optional[int] = None,
        all_files: Optional[Iterable[Dict[str, Any]]] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        return self.send_message(MessageType.ANALYZE_GRAPH, _compact({
            'rootFilePath': root_file_path,
            'maxHops': max_hops,
            'allFiles': list(all_files) if all_files is not None else None,
            'limit': limit,
        }))
