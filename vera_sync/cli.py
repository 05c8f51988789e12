# vera_sync/cli.py
"""
Command line entry points.

    flask --app wsgi sync replicate      Sourcify store -> VerA store
    flask --app wsgi sync push           VerA store -> Sourcify server (batch)
    flask --app wsgi sync listen         VerA notifications -> Sourcify server
    flask --app wsgi sync checkpoint ... inspect / reset checkpoints
    flask --app wsgi sync init-db        create the sourcify_sync table

The same commands are available as `vera-sync sync ...`.
"""
import json
import logging
import os
import sys

import click
import psycopg2
from flask import current_app
from flask.cli import AppGroup, FlaskGroup

from vera_sync.config import SyncSettings
from vera_sync.errors import CheckpointError, FatalSyncError
from vera_sync.models import SyncStatus
from vera_sync.services.checkpoint import FileCheckpointStore
from vera_sync.services.forwarder import NotificationForwarder
from vera_sync.services.lifecycle import GracefulShutdown
from vera_sync.services.listener import NotificationListener, dsn_from_engine
from vera_sync.services.push_forward import make_pusher
from vera_sync.services.replicator import make_replicator
from vera_sync.services.runtime import SyncRuntime
from vera_sync.services.submission import VerificationSubmitter

logger = logging.getLogger(__name__)

sync_cli = AppGroup("sync", help="Sourcify / Verifier Alliance synchronization.")

PIPELINES = ("replicate", "push")


def _checkpoint_name(settings, pipeline: str) -> str:
    return settings.replicate_checkpoint_name if pipeline == "replicate" else settings.push_checkpoint_name


def _close(runtime) -> bool:
    try:
        runtime.close()
        return True
    except Exception:
        logger.exception("Error while closing resources")
        return False


def _run_batch(factory, batch_size):
    try:
        runtime = SyncRuntime.from_app(current_app._get_current_object())
    except Exception:
        logger.exception("Could not start")
        sys.exit(1)

    failed = False
    with GracefulShutdown() as shutdown:
        try:
            summary = factory(runtime, should_stop=shutdown, batch_size=batch_size).run()
            click.echo(json.dumps(summary.as_dict(), default=str))
        except Exception:
            logger.exception("Sync run aborted")
            failed = True
        finally:
            if not _close(runtime):
                failed = True
    if failed:
        sys.exit(1)


@sync_cli.command("replicate")
@click.option("--batch-size", type=int, default=None, help="Verified contracts per batch.")
def replicate_command(batch_size):
    """Copy Sourcify verified contracts into the VerA store."""
    _run_batch(make_replicator, batch_size)


@sync_cli.command("push")
@click.option("--batch-size", type=int, default=None, help="Verified contracts per batch.")
def push_command(batch_size):
    """Poll submitted jobs, retry failures and submit new VerA contracts to Sourcify."""
    _run_batch(make_pusher, batch_size)


@sync_cli.command("listen")
def listen_command():
    """Forward `new_verified_contract` notifications to the Sourcify server until stopped."""
    try:
        runtime = SyncRuntime.from_app(current_app._get_current_object())
    except Exception:
        logger.exception("Could not start")
        sys.exit(1)

    settings = runtime.settings
    forwarder = NotificationForwarder(
        VerificationSubmitter(runtime.vera_engine, runtime.client),
        self_created_by=settings.self_created_by,
    )
    dsn = dsn_from_engine(runtime.vera_engine)

    failed = False
    with GracefulShutdown() as shutdown:
        listener = NotificationListener(
            connect=lambda: psycopg2.connect(dsn),
            channel=settings.notification_channel,
            handler=forwarder,
            poll_timeout=settings.listener_poll_timeout,
            reconnect_attempts=settings.listener_reconnect_attempts,
            reconnect_delay=settings.listener_reconnect_delay,
            should_stop=shutdown,
        )
        try:
            listener.run()
        except FatalSyncError:
            logger.exception("Listener gave up")
            failed = True
        except Exception:
            logger.exception("Unexpected error in listener")
            failed = True
        finally:
            shutdown.request("listener exiting")
            listener.close()
            if not _close(runtime):
                failed = True
    if failed:
        sys.exit(1)


@sync_cli.group("checkpoint")
def checkpoint_group():
    """Inspect or reset pipeline checkpoints."""


@checkpoint_group.command("show")
def checkpoint_show():
    settings = SyncSettings.from_config(current_app.config)
    out = {}
    for pipeline in PIPELINES:
        store = _store(settings, pipeline)
        try:
            out[pipeline] = store.load()
        except CheckpointError as e:
            raise click.ClickException(str(e))
    click.echo(json.dumps(out))


@checkpoint_group.command("set")
@click.argument("pipeline", type=click.Choice(PIPELINES))
@click.argument("value", type=int)
def checkpoint_set(pipeline, value):
    """Set PIPELINE's checkpoint to VALUE (the next verified contract id)."""
    settings = SyncSettings.from_config(current_app.config)
    try:
        _store(settings, pipeline).reset(value)
    except CheckpointError as e:
        raise click.ClickException(str(e))
    click.echo(f"{pipeline}: {value}")


def _store(settings, pipeline):
    return FileCheckpointStore(settings.checkpoint_dir, _checkpoint_name(settings, pipeline))


@sync_cli.command("init-db")
def init_db_command():
    """Create the sourcify_sync table in the VerA store if it is missing."""
    from vera_sync.models import db

    SyncStatus.__table__.create(bind=db.engine, checkfirst=True)
    click.echo("sourcify_sync ready")


def _create_app():
    from vera_sync import create_app

    return create_app(os.getenv("FLASK_ENV", "development"))


main = FlaskGroup(create_app=_create_app, help="VerA sync management commands.")
