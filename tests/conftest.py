from __future__ import annotations

import socket
import threading
import time
from collections.abc import Iterator

import pytest
import uvicorn

from couchauth.config import ScenarioConfig
from shared.fake_couchdb import FakeCouchDB, create_app


class _ThreadedServer:
    """Run a uvicorn server for an app on an ephemeral localhost port."""

    def __init__(self, app: object) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.port = self.sock.getsockname()[1]
        self.server = uvicorn.Server(uvicorn.Config(app, log_level="warning", lifespan="off"))
        self.thread = threading.Thread(
            target=self.server.run, kwargs={"sockets": [self.sock]}, daemon=True
        )

    def start(self) -> None:
        self.thread.start()
        deadline = time.monotonic() + 10
        while not self.server.started:
            if not self.thread.is_alive() or time.monotonic() > deadline:
                raise RuntimeError("fake CouchDB server did not start")
            time.sleep(0.01)

    def stop(self) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=5)
        self.sock.close()


@pytest.fixture(scope="session")
def couchdb_server() -> Iterator[FakeCouchDB]:
    couch = FakeCouchDB()
    server = _ThreadedServer(create_app(couch))
    server.start()
    couch.url = f"http://127.0.0.1:{server.port}"
    try:
        yield couch
    finally:
        server.stop()


@pytest.fixture
def couchdb(couchdb_server: FakeCouchDB) -> FakeCouchDB:
    """The shared fake server, emptied before each test."""
    couchdb_server.reset()
    return couchdb_server


@pytest.fixture
def config(couchdb: FakeCouchDB) -> ScenarioConfig:
    return ScenarioConfig(host=couchdb.url, timeout=5)
