import atexit
import logging

import click
from flask import Flask

from insightflow.config import Config
from insightflow.extensions import db, celery, migrate
from insightflow.application.services.app_state import get_state, init_state
from insightflow.application.services.export import ExportService
from insightflow.application.services.storage import StorageKey
from insightflow.application.tasks.ai_tasks import async_analyze_form
from insightflow.domain.models import StorageEntry
from insightflow.interface.api.routes import api_bp


def create_app(test_config=None):
    app = Flask(__name__)
    if test_config is None:
        # Load from .env / config.py (Production/Dev)
        app.config.from_object(Config)
    else:
        # Load from test_config passed by Pytest
        app.config.from_mapping(test_config)

    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize Extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Configure Celery
    celery.conf.update(
        broker_url=app.config.get('CELERY_BROKER_URL'),
        result_backend=app.config.get('CELERY_RESULT_BACKEND'),
    )

    app.register_blueprint(api_bp)

    # Execution context of this process; tests build their own per test.
    if not app.config.get('TESTING'):
        state = init_state(app)
        atexit.register(state.close)

    @app.before_request
    def pull_external_changes():
        """Reconciles with writes other contexts made since the last request."""
        if app.config.get('SYNC_ON_REQUEST', True):
            get_state().sync()

    @app.cli.command("seed-demo")
    def seed_demo():
        """Stores the demo institution and form when the store is empty."""
        app.config['SEED_DEMO_DATA'] = True
        state = init_state(app)
        print(f"Done. {len(state.institutions)} institution(s), {len(state.all_forms)} form(s).")

    @app.cli.command("export-csv")
    @click.argument("form_id")
    @click.argument("file_path")
    def export_csv(form_id, file_path):
        """Writes the responses of FORM_ID to FILE_PATH as CSV."""
        state = get_state()
        form = state.get_form(form_id)
        if form is None:
            print(f"Form '{form_id}' not found.")
            return
        frame = ExportService.build_frame(form, state.get_responses_by_form(form_id))
        frame.to_csv(file_path, index=False)
        print(f"Exported {len(frame)} response(s) to {file_path}.")

    @app.cli.command("trigger-analysis")
    @click.argument("form_id")
    def trigger_analysis(form_id):
        """Queues the AI analysis of FORM_ID on the Celery worker."""
        task = async_analyze_form.delay(form_id)
        print(f"Task triggered! ID: {task.id}")
        print("Check worker logs for progress.")

    @app.cli.command("sync-status")
    def sync_status():
        """Shows the revision and last writer of every durable store key."""
        for key in StorageKey.ALL:
            entry = db.session.get(StorageEntry, key)
            if entry is None:
                print(f"{key:<16} (never written)")
            else:
                state = "removed" if entry.value is None else f"{len(entry.value)} bytes"
                print(f"{key:<16} rev {entry.revision:<5} by {entry.writer_id}  {state}")

    # Healthcheck
    @app.route('/health')
    def health():
        return {"status": "ok", "service": "web"}

    return app
