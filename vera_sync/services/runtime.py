# vera_sync/services/runtime.py
import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from vera_sync.config import SyncSettings
from vera_sync.services.checkpoint import FileCheckpointStore
from vera_sync.services.sourcify_client import SourcifyClient

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    """Everything a pipeline needs, resolved once from the Flask app."""

    settings: SyncSettings
    vera_engine: Engine
    sourcify_engine: Engine
    client: SourcifyClient

    @classmethod
    def from_app(cls, app, client: SourcifyClient = None) -> "SyncRuntime":
        from vera_sync.models import db

        settings = SyncSettings.from_config(app.config)
        with app.app_context():
            vera_engine = db.engine
            sourcify_engine = db.engines["sourcify"]
        return cls(
            settings=settings,
            vera_engine=vera_engine,
            sourcify_engine=sourcify_engine,
            client=client or SourcifyClient(
                settings.sourcify_server_url, timeout=settings.sourcify_request_timeout
            ),
        )

    def checkpoint(self, name: str) -> FileCheckpointStore:
        return FileCheckpointStore(self.settings.checkpoint_dir, name)

    def close(self) -> None:
        self.client.close()
        for engine in (self.vera_engine, self.sourcify_engine):
            engine.dispose()
        logger.info("Closed Sourcify client and database pools")
