import http.server
import socket
import sys
import threading
import urllib.parse
import queue
import time
from typing import Dict, List, Optional, Tuple, Union

from .constants import REQUEST_HOLD_TIMEOUT
from .utils import ListenerBindError, AuthTimeout, AuthCancelled


# Put on the request queue when the listener stops to wake up a waiter.
_STOPPED = object()


class InboundRequest:
    """A request received by the listener, held open until someone answers it."""

    def __init__(self, method: str, path: str, query: Dict[str, List[str]], headers: Dict[str, str]):
        self.method = method
        self.path = path
        self.query = query
        self.headers = headers
        self._lock = threading.Lock()
        self._answered = threading.Event()
        self._sent = threading.Event()
        self._response = None

    def respond(self, status: int, body: bytes = b'', content_type: Optional[str] = None) -> bool:
        """
        Answer the request. Only the first answer counts.

        Returns:
            True if this call answered the request, False if it was already answered.
        """
        with self._lock:
            if self._response is not None:
                return False
            self._response = (status, body, content_type)
        self._answered.set()
        return True

    def drain(self) -> bool:
        """Answer a request nobody is interested in."""
        if self.path == '/favicon.ico':
            return self.respond(204)
        return self.respond(404, b"Not found", 'text/plain')

    def wait_answer(self, timeout: float) -> Tuple[int, bytes, Optional[str]]:
        # Nobody claimed the request in time, give the browser an answer anyway.
        if not self._answered.wait(timeout):
            self.respond(503, b"Login flow is not waiting for this request", 'text/plain')
        return self._response

    def mark_sent(self):
        self._sent.set()

    def wait_sent(self, timeout: Optional[float] = None) -> bool:
        """Block until the handler has flushed the response."""
        return self._sent.wait(timeout)


class LoopbackRequestHandler(http.server.BaseHTTPRequestHandler):
    """Hands every GET over to the listener's queue and writes back whatever answer it gets."""

    def __init__(self, *args, request_queue=None, hold_timeout=REQUEST_HOLD_TIMEOUT, **kwargs):
        self.request_queue = request_queue
        self.hold_timeout = hold_timeout
        super().__init__(*args, **kwargs)

    def do_GET(self):
        parsed = urllib.parse.urlsplit(self.path)
        inbound = InboundRequest(
            'GET',
            parsed.path,
            urllib.parse.parse_qs(parsed.query, keep_blank_values=True),
            dict(self.headers.items()),
        )
        self.request_queue.put(inbound)

        status, body, content_type = inbound.wait_answer(self.hold_timeout)
        try:
            self.send_response(status)
            if content_type:
                self.send_header('Content-Type', content_type)
            if body:
                self.send_header('Content-Length', str(len(body)))
            self.send_header('Cache-Control', 'no-store')
            self.end_headers()
            if body:
                self.wfile.write(body)
            self.wfile.flush()
        finally:
            self.close_connection = True
            inbound.mark_sent()

    def log_message(self, format, *args):
        """Suppress log messages."""
        pass


class LoopbackHTTPServer(http.server.ThreadingHTTPServer):
    """Threaded server that refuses to share its port with another listener."""

    # On Windows SO_REUSEADDR lets a bind succeed on a port another socket is
    # already listening on, so a second process would silently steal redirects.
    allow_reuse_address = sys.platform != 'win32'
    daemon_threads = True

    def server_bind(self):
        if hasattr(socket, 'SO_EXCLUSIVEADDRUSE'):
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE, 1)
        super().server_bind()


class LoopbackListener:
    """Local HTTP listener that delivers requests to callers waiting on a path."""

    def __init__(self, hold_timeout: float = REQUEST_HOLD_TIMEOUT):
        """
        Initialize the listener. Nothing is bound until ensure_started().

        Args:
            hold_timeout: Maximum time a request is held open waiting to be claimed (seconds)
        """
        self.hold_timeout = hold_timeout
        self.host = None
        self.port = None
        self.server = None
        self.server_thread = None
        self.requests = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self.server is not None

    def ensure_started(self, prefix: Union[str, Tuple[str, int]]) -> int:
        """
        Start listening on the prefix, restarting if already listening.

        A previous aborted attempt may have left queued or half-answered
        requests behind, so an existing server is always torn down first.

        Args:
            prefix: A base URI such as "http://localhost:8085/" or a (host, port) tuple.

        Returns:
            The port number the server is listening on

        Raises:
            ListenerBindError: If the host/port cannot be bound.
        """
        host, port = _parse_prefix(prefix)

        self.stop()

        with self._lock:
            request_queue = queue.Queue()

            # Create handler with request queue reference
            handler = lambda *args, **kwargs: LoopbackRequestHandler(
                *args,
                request_queue=request_queue,
                hold_timeout=self.hold_timeout,
                **kwargs
            )

            try:
                server = LoopbackHTTPServer((host, port), handler)
            except OSError as e:
                raise ListenerBindError(host, port, e.strerror or str(e))

            self.server = server
            self.requests = request_queue
            self.host = host
            self.port = server.server_address[1]

            # Start server in separate thread
            self.server_thread = threading.Thread(target=server.serve_forever, kwargs={'poll_interval': 0.2})
            self.server_thread.daemon = True
            self.server_thread.start()

        return self.port

    def await_request(self, path: str, body: Optional[bytes] = None,
                      content_type: str = 'text/html; charset=utf-8',
                      timeout: Optional[float] = None) -> InboundRequest:
        """
        Wait for a request on path, draining every other request meanwhile.

        Args:
            path: Absolute path to wait for.
            body: Response body for the matching request; without one it gets a 204.
            content_type: Content type of the body.
            timeout: Maximum time to wait (seconds), None to wait forever.

        Returns:
            The matching request, already answered and flushed.

        Raises:
            AuthTimeout: If nothing matched within timeout.
            AuthCancelled: If the listener is stopped while waiting.
        """
        request_queue = self.requests
        if request_queue is None:
            raise AuthCancelled("listener is not running")

        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            remaining = None
            if deadline is not None:
                remaining = max(0, deadline - time.monotonic())

            try:
                inbound = request_queue.get(timeout=remaining)
            except queue.Empty:
                raise AuthTimeout(f"no request on {path} within {timeout} seconds")

            if inbound is _STOPPED:
                # Leave the marker for any other waiter on this queue.
                request_queue.put(_STOPPED)
                raise AuthCancelled("listener stopped")

            if inbound.path != path:
                inbound.drain()
                continue

            if body is not None:
                claimed = inbound.respond(200, body, content_type)
            else:
                claimed = inbound.respond(204)

            # The handler already gave up on it.
            if not claimed:
                continue

            inbound.wait_sent(self.hold_timeout)
            return inbound

    def stop(self):
        """Stop the server and answer every request still held."""
        with self._lock:
            server = self.server
            server_thread = self.server_thread
            request_queue = self.requests
            self.server = None
            self.server_thread = None

        if server:
            server.shutdown()
            server.server_close()

        if server_thread and server_thread.is_alive():
            server_thread.join(timeout=1)

        if request_queue is not None:
            while True:
                try:
                    inbound = request_queue.get_nowait()
                except queue.Empty:
                    break
                if inbound is not _STOPPED:
                    inbound.drain()
            request_queue.put(_STOPPED)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        self.stop()
        return False


def _parse_prefix(prefix) -> Tuple[str, int]:
    if isinstance(prefix, tuple):
        return prefix
    parsed = urllib.parse.urlsplit(prefix)
    if not parsed.hostname:
        raise ValueError(f"listener prefix has no host: {prefix!r}")
    return parsed.hostname, parsed.port or 80
