"""HTTP transport whose in-flight requests can be aborted from another thread.

``requests`` offers no way to interrupt a call blocked on a socket read; it
returns only when the server answers or the read timeout expires.  The
long-polling engine holds ``getUpdates`` open for up to ``timeout`` seconds,
so stopping it needs a way to cut that call short.
:class:`AbortableHTTPAdapter` remembers every connection it opens and
:meth:`~AbortableHTTPAdapter.abort` shuts their sockets down, which makes the
blocked read fail at once.

Connections made through a proxy are not tracked; for those the read
timeout remains the bound.
"""

from __future__ import annotations

import socket
import threading
import weakref
from typing import Any, Optional, Tuple, Type

import requests
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from core.logger import BotwireLogger

logger = BotwireLogger.get_logger()


class AbortableHTTPAdapter(HTTPAdapter):
    """``HTTPAdapter`` that can shut down its open connections on demand."""

    def __init__(self, **kwargs: Any) -> None:
        # HTTPAdapter.__init__ builds the pool manager, which needs these.
        self._connections: "weakref.WeakSet[HTTPConnection]" = weakref.WeakSet()
        self._connections_lock = threading.Lock()
        self._aborted = False
        super().__init__(**kwargs)

    def init_poolmanager(self, *args: Any, **kwargs: Any) -> None:
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            "http": self._tracking_pool(HTTPConnectionPool, HTTPConnection),
            "https": self._tracking_pool(HTTPSConnectionPool, HTTPSConnection),
        }

    def _tracking_pool(
        self,
        pool_cls: Type[HTTPConnectionPool],
        connection_cls: Type[HTTPConnection],
    ) -> Type[HTTPConnectionPool]:
        adapter = self

        class TrackingConnection(connection_cls):  # type: ignore[valid-type,misc]
            def connect(self) -> None:
                super().connect()
                adapter._track(self)

        class TrackingPool(pool_cls):  # type: ignore[valid-type,misc]
            ConnectionCls = TrackingConnection

        return TrackingPool

    def _track(self, connection: HTTPConnection) -> None:
        with self._connections_lock:
            if not self._aborted:
                self._connections.add(connection)
                return
        # Connected after abort(): the caller must not block on it either.
        _shutdown(connection)

    def abort(self) -> None:
        """Shut down every open socket; reads blocked on them fail immediately.

        The adapter stays aborted: connections it opens afterwards are shut
        down as soon as they connect.
        """
        with self._connections_lock:
            self._aborted = True
            connections = list(self._connections)
            self._connections.clear()
        aborted = sum(_shutdown(connection) for connection in connections)
        if aborted:
            logger.debug("Aborted open connections", extra={"connections": aborted})


def _shutdown(connection: HTTPConnection) -> bool:
    sock = connection.sock
    if sock is None:
        return False
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        # Already closed by the peer or by urllib3.
        logger.debug("Connection not aborted", extra={"error": str(exc)})
        return False
    return True


def abortable_session(base: Optional[requests.Session] = None) -> Tuple[requests.Session, AbortableHTTPAdapter]:
    """Return a new session copying *base*'s settings, and its abortable adapter.

    Headers, proxies, auth and TLS settings are copied; adapters mounted on
    *base* are not.
    """
    session = requests.Session()
    if base is not None:
        session.headers.update(base.headers)
        session.proxies.update(base.proxies)
        session.auth = base.auth
        session.verify = base.verify
        session.cert = base.cert
        session.trust_env = base.trust_env
    adapter = AbortableHTTPAdapter()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session, adapter
