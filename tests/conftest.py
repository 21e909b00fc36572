import pytest
from insightflow.app import create_app
from insightflow.extensions import db
from insightflow.application.services.app_state import (
    AppState, CHANNEL_EXTENSION_KEY, STATE_EXTENSION_KEY, init_state
)
from insightflow.domain.schemas import Institution, Department
from tests.factories import make_form


@pytest.fixture(scope='session')
def app():
    """
    Creates a Flask app context for tests.
    Passes test_config to force SQLite and override environment variables.
    """
    test_config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "CELERY_BROKER_URL": "memory://",
        "CELERY_RESULT_BACKEND": "cache+memory://",
        "GEMINI_API_KEY": "test-key",
        "GEMINI_API_URL": "https://ai.test/v1beta",
        "GEMINI_FORM_MODEL": "form-model",
        "GEMINI_ANALYSIS_MODEL": "analysis-model",
        "AI_REQUEST_TIMEOUT": 5,
        "ANALYSIS_SAMPLE_LIMIT": 50,
        "SEED_DEMO_DATA": False,
        "SYNC_ON_REQUEST": True,
    }

    app = create_app(test_config=test_config)

    yield app


@pytest.fixture(scope='function')
def db_session(app):
    """
    Creates a fresh database for each test function.
    Create tables -> Run Test -> Drop tables.
    """
    with app.app_context():
        db.create_all()

        yield db.session

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def state(app, db_session):
    """
    The app's own execution context, hydrated from the (empty) test database.
    """
    app_state = init_state(app)

    yield app_state

    app_state.close()
    app.extensions.pop(STATE_EXTENSION_KEY, None)


@pytest.fixture(scope='function')
def other_context(app, state):
    """
    A second execution context (think: another browser tab or a worker)
    sharing the same database and broadcast channel as `state`.
    """
    other = AppState.open(channel=app.extensions[CHANNEL_EXTENSION_KEY])

    yield other

    other.close()


@pytest.fixture(scope='function')
def client(app, state):
    """
    A test client for the app.
    """
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app, state):
    """
    A test runner for the app's CLI commands.
    """
    return app.test_cli_runner()


@pytest.fixture
def sample_data(state):
    """
    Fixture to populate the store with a controlled two-tenant scenario.
    - inst-1: one institution-wide form, one form per department (d-ops, d-sales)
    - inst-2: one form
    """
    state.add_institution(Institution(id="inst-2", name="Blue Clinic", created_at="2024-01-01T00:00:00+00:00"))
    state.add_institution(Institution(id="inst-1", name="Grand Azure Hotels", primary_color="#0f766e",
                                      created_at="2024-01-01T00:00:00+00:00"))
    state.add_department(Department(id="d-ops", name="Operations", institution_id="inst-1"))
    state.add_department(Department(id="d-sales", name="Sales", institution_id="inst-1"))

    forms = [
        make_form("form-1"),
        make_form("form-ops", department_id="d-ops", title="Ops Pulse"),
        make_form("form-sales", department_id="d-sales", title="Sales Pulse"),
        make_form("form-clinic", institution_id="inst-2", title="Patient Survey"),
    ]
    # Stored directly: add_form would re-home them under the session's tenant
    state.form_repo.items = list(reversed(forms))
    state.form_repo.persist()

    return {"forms": {f.id: f for f in forms}}
