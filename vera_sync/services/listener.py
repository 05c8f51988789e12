# vera_sync/services/listener.py
"""
PostgreSQL LISTEN loop for the notification forwarder (psycopg2).

Notifications on one connection are handled one at a time, in arrival
order. A dropped connection is reopened and LISTEN re-issued; after
`reconnect_attempts` consecutive failures the listener gives up with
FatalSyncError.
"""
import json
import logging
import select
import time
from typing import Any, Callable, Dict, Optional

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT

from vera_sync.errors import FatalSyncError

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)


def dsn_from_engine(engine) -> str:
    """libpq DSN for a SQLAlchemy psycopg2 engine (drops the +driver suffix)."""
    return engine.url.set(drivername="postgresql").render_as_string(hide_password=False)


class NotificationListener:
    def __init__(
        self,
        connect: Callable[[], Any],
        channel: str,
        handler: Callable[[Dict[str, Any]], Any],
        poll_timeout: float = 5.0,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 2.0,
        should_stop: Optional[Callable[[], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._connect = connect
        self.channel = channel
        self.handler = handler
        self.poll_timeout = poll_timeout
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.should_stop = should_stop or (lambda: False)
        self.sleep = sleep
        self._conn = None
        self.handled = 0

    def run(self) -> None:
        failures = 0
        while not self.should_stop():
            try:
                self._open()
                failures = 0
                self._drain()
            except CONNECTION_ERRORS as e:
                failures += 1
                if failures > self.reconnect_attempts:
                    raise FatalSyncError(
                        f"lost LISTEN connection on {self.channel!r} after {failures - 1} reconnect attempts"
                    ) from e
                delay = self.reconnect_delay * failures
                logger.warning(
                    "Notification connection error, reconnecting",
                    extra={"channel": self.channel, "attempt": failures, "delay": delay, "error": str(e)},
                )
                self.close()
                self.sleep(delay)
        self.close()
        logger.info("Stopped listening", extra={"channel": self.channel, "handled": self.handled})

    def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            conn.close()
        except CONNECTION_ERRORS:
            logger.debug("Ignoring error while closing notification connection", exc_info=True)

    def _open(self) -> None:
        conn = self._connect()
        conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        with conn.cursor() as cur:
            cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
        self._conn = conn
        logger.info("Started listening for VerA verified_contracts", extra={"channel": self.channel})

    def _drain(self) -> None:
        conn = self._conn
        while not self.should_stop():
            if not self._wait(conn):
                continue
            conn.poll()
            while conn.notifies:
                notify = conn.notifies.pop(0)
                self._dispatch(notify)

    def _wait(self, conn) -> bool:
        readable, _, _ = select.select([conn], [], [], self.poll_timeout)
        return bool(readable)

    def _dispatch(self, notify) -> None:
        if notify.channel != self.channel:
            return
        try:
            payload = json.loads(notify.payload)
        except ValueError:
            logger.error(
                "Dropping notification with invalid JSON payload",
                extra={"channel": notify.channel, "payload": notify.payload},
            )
            return
        try:
            self.handler(payload)
        except Exception:
            logger.exception("Notification handler raised", extra={"channel": notify.channel})
        self.handled += 1
