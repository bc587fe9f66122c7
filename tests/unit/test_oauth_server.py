"""
Unit tests for the loopback listener.

These run a real listener on an ephemeral local port and use requests to play
the browser.
"""

import socket
import sys
import threading
import time

import pytest
import requests

from unibox.oauth_server import LoopbackHTTPServer, LoopbackListener
from unibox.utils import ListenerBindError, AuthTimeout, AuthCancelled


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def _get_async(url, results, **kwargs):
    def run():
        results.append(requests.get(url, timeout=10, **kwargs))
    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t


@pytest.fixture
def listener():
    lst = LoopbackListener(hold_timeout=5)
    yield lst
    lst.stop()


class TestLoopbackListener:

    def test_start_returns_port(self, listener):
        port = _free_port()
        assert listener.ensure_started(('127.0.0.1', port)) == port
        assert listener.is_running

    def test_start_from_uri(self, listener):
        port = _free_port()
        assert listener.ensure_started('http://127.0.0.1:%d/' % port) == port

    def test_await_request_with_body(self, listener):
        port = _free_port()
        listener.ensure_started(('127.0.0.1', port))

        results = []
        t = _get_async('http://127.0.0.1:%d/authorize?x=1' % port, results)
        inbound = listener.await_request('/authorize', body=b'<html>hi</html>', timeout=5)
        t.join(5)

        assert inbound.path == '/authorize'
        assert inbound.query == {'x': ['1']}
        assert results[0].status_code == 200
        assert results[0].content == b'<html>hi</html>'
        assert results[0].headers['Content-Type'].startswith('text/html')

    def test_await_request_without_body_answers_no_content(self, listener):
        port = _free_port()
        listener.ensure_started(('127.0.0.1', port))

        results = []
        t = _get_async('http://127.0.0.1:%d/token' % port, results)
        listener.await_request('/token', timeout=5)
        t.join(5)
        assert results[0].status_code == 204

    def test_other_paths_are_drained(self, listener):
        port = _free_port()
        listener.ensure_started(('127.0.0.1', port))

        got = {}

        def wait():
            got['req'] = listener.await_request('/authorize', body=b'ok', timeout=5)

        waiter = threading.Thread(target=wait, daemon=True)
        waiter.start()

        favicon = requests.get('http://127.0.0.1:%d/favicon.ico' % port, timeout=5)
        other = requests.get('http://127.0.0.1:%d/something-else' % port, timeout=5)
        assert 'req' not in got
        assert favicon.status_code == 204
        assert other.status_code == 404

        final = requests.get('http://127.0.0.1:%d/authorize' % port, timeout=5)
        waiter.join(5)
        assert final.content == b'ok'
        assert got['req'].path == '/authorize'

    def test_timeout(self, listener):
        listener.ensure_started(('127.0.0.1', _free_port()))
        start = time.monotonic()
        with pytest.raises(AuthTimeout):
            listener.await_request('/authorize', timeout=0.2)
        assert time.monotonic() - start < 5

    def test_stop_wakes_waiter(self, listener):
        listener.ensure_started(('127.0.0.1', _free_port()))
        errors = []

        def wait():
            try:
                listener.await_request('/authorize')
            except AuthCancelled as e:
                errors.append(e)

        waiter = threading.Thread(target=wait, daemon=True)
        waiter.start()
        time.sleep(0.2)
        listener.stop()
        waiter.join(5)

        assert len(errors) == 1
        assert not listener.is_running

    def test_await_before_start(self, listener):
        with pytest.raises(AuthCancelled):
            listener.await_request('/authorize', timeout=0.1)

    def test_restart_discards_stale_requests(self, listener):
        port = _free_port()
        listener.ensure_started(('127.0.0.1', port))

        # Arrives while nobody waits and is left queued.
        stale = []
        t = _get_async('http://127.0.0.1:%d/token' % port, stale)
        time.sleep(0.3)

        assert listener.ensure_started(('127.0.0.1', port)) == port
        t.join(5)
        assert stale[0].status_code == 404

        with pytest.raises(AuthTimeout):
            listener.await_request('/token', timeout=0.3)

    def test_unclaimed_request_gets_answer_after_hold_timeout(self):
        lst = LoopbackListener(hold_timeout=0.2)
        port = _free_port()
        try:
            lst.ensure_started(('127.0.0.1', port))
            resp = requests.get('http://127.0.0.1:%d/authorize' % port, timeout=5)
            assert resp.status_code == 503

            # The expired request is skipped and the waiter keeps waiting.
            with pytest.raises(AuthTimeout):
                lst.await_request('/authorize', timeout=0.3)
        finally:
            lst.stop()

    def test_bind_error(self, listener):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(('127.0.0.1', 0))
            busy.listen(1)
            port = busy.getsockname()[1]

            with pytest.raises(ListenerBindError) as exc_info:
                listener.ensure_started(('127.0.0.1', port))

        assert exc_info.value.port == port
        assert not listener.is_running

    def test_stop_is_idempotent(self, listener):
        listener.stop()
        listener.ensure_started(('127.0.0.1', _free_port()))
        listener.stop()
        listener.stop()
        assert not listener.is_running

    def test_server_does_not_share_its_port(self, listener):
        listener.ensure_started(('127.0.0.1', _free_port()))
        assert isinstance(listener.server, LoopbackHTTPServer)
        assert LoopbackHTTPServer.allow_reuse_address == (sys.platform != 'win32')
        if hasattr(socket, 'SO_EXCLUSIVEADDRUSE'):
            assert listener.server.socket.getsockopt(socket.SOL_SOCKET, socket.SO_EXCLUSIVEADDRUSE)
