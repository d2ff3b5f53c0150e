"""Shared fixtures for the test suite."""
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from ical_samples import make_calendar, make_event


class TrickleHandler(BaseHTTPRequestHandler):
    """Serves a calendar one byte at a time."""

    body = make_calendar(make_event('slow-1')).encode('utf-8')
    byte_delay = 0.02

    def do_GET(self):
        self.send_response(200)
        self.send_header('Content-Type', 'text/calendar')
        self.send_header('Content-Length', str(len(self.body)))
        self.end_headers()

        try:
            for index in range(len(self.body)):
                if self.server.stopping.is_set():
                    return
                self.wfile.write(self.body[index:index + 1])
                self.wfile.flush()
                time.sleep(self.byte_delay)
        except OSError:
            # Client gave up on the body
            return

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_feed_url():
    """Start a local server whose body takes several seconds to arrive."""
    server = ThreadingHTTPServer(('127.0.0.1', 0), TrickleHandler)
    server.daemon_threads = True
    server.stopping = threading.Event()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    host, port = server.server_address[:2]
    yield f'http://{host}:{port}/slow.ics'

    server.stopping.set()
    server.shutdown()
    server.server_close()
