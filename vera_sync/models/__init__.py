# vera_sync/models/__init__.py
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def init_app(app):
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    db.init_app(app)
    migrate.init_app(app, db)


# Import models so they register on db.metadata
from .code import Code, Source  # noqa
from .contract import Contract, ContractDeployment  # noqa
from .compilation import CompiledContract, CompiledContractSource  # noqa
from .verified_contract import VerifiedContract, SourcifyMatch  # noqa
from .sync_status import SyncStatus  # noqa

__all__ = [
    "db",
    "migrate",
    "Code",
    "Source",
    "Contract",
    "ContractDeployment",
    "CompiledContract",
    "CompiledContractSource",
    "VerifiedContract",
    "SourcifyMatch",
    "SyncStatus",
]
