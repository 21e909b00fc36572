import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from flask import current_app

from insightflow.application.services.repositories import (
    AnalysisRepository, DepartmentRepository, FormRepository, InstitutionRepository, ResponseRepository
)
from insightflow.application.services.session import DEFAULT_INSTITUTION_ID, SessionService
from insightflow.application.services.storage import DurableStore, StorageKey
from insightflow.application.services.sync import BroadcastChannel, StoragePoller, SyncListener
from insightflow.application.services.visibility import visible_forms
from insightflow.extensions import db
from insightflow.domain.schemas import (
    AnalysisRecord, Department, FieldType, FormField, FormResponse, FormTemplate,
    Institution, SessionUser, User, UserRole
)

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_institution() -> Institution:
    return Institution(
        id=DEFAULT_INSTITUTION_ID,
        name='Grand Azure Hotels',
        logo_url='https://cdn-icons-png.flaticon.com/512/201/201623.png',
        primary_color='#0f766e',
        secondary_color='#f0fdfa',
        created_at=utc_now_iso(),
    )


def demo_form() -> FormTemplate:
    return FormTemplate(
        id='form-1',
        institution_id=DEFAULT_INSTITUTION_ID,
        title='Guest Experience Survey',
        description='Tell us about your stay at Grand Azure.',
        industry='Hospitality',
        created_at=utc_now_iso(),
        fields=[
            FormField(id='cleanliness', label='Room Cleanliness', type=FieldType.RATING, required=True),
            FormField(id='staff', label='Staff Friendliness', type=FieldType.RATING, required=True),
            FormField(id='checkin', label='Check-in Speed', type=FieldType.RATING, required=True),
            FormField(id='comments', label='Comments', type=FieldType.TEXT, required=False),
        ],
    )


class AppState:
    """
    The state of one execution context (a web worker, a Celery worker, a CLI run).

    Owns the repositories, the current session and the sync listener.
    Built once at startup from the durable store, closed at teardown, and
    handed explicitly to every service that needs it.

    All reads and writes go through exclusive(): one re-entrant lock per
    context, so mutations within a context never interleave. Storage
    notifications raised while it is held are published after it is released;
    a context never calls into another while holding its own lock.
    """

    def __init__(self, store: DurableStore):
        self.store = store
        self.context_id = store.context_id
        self._lock = threading.RLock()

        self.institution_repo = InstitutionRepository(store)
        self.department_repo = DepartmentRepository(store)
        self.form_repo = FormRepository(store)
        self.response_repo = ResponseRepository(store)
        self.analysis_repo = AnalysisRepository(store)
        self._current_user: Optional[User] = None

        self.poller = StoragePoller(store)
        self.listener = SyncListener(self, self.poller)

    @contextmanager
    def exclusive(self):
        with self.store.deferred_publish():
            with self._lock:
                yield

    # --- Lifecycle ---

    @classmethod
    def open(cls, channel=None, seed_defaults: bool = False, context_id: Optional[str] = None) -> 'AppState':
        """Creates a context, hydrates it from storage and starts listening for changes."""
        store = DurableStore(context_id or f"ctx-{uuid.uuid4().hex[:12]}", channel=channel)
        state = cls(store)
        state.hydrate(seed_defaults=seed_defaults)
        if channel is not None:
            channel.subscribe(state.context_id, state.listener.handle)
        logger.info(f"[Store] Context {state.context_id} ready.")
        return state

    def hydrate(self, seed_defaults: bool = False):
        with self.exclusive():
            self.institution_repo.hydrate([default_institution()] if seed_defaults else [], persist_default=seed_defaults)
            self.department_repo.hydrate([])
            self.form_repo.hydrate([demo_form()] if seed_defaults else [], persist_default=seed_defaults)
            self.response_repo.hydrate([])
            self.analysis_repo.hydrate([])
            self._current_user = self.store.load(StorageKey.SESSION, None, SessionUser)
            self.poller.prime()

    def close(self):
        if self.store.channel is not None:
            self.store.channel.unsubscribe(self.context_id)
        logger.info(f"[Store] Context {self.context_id} closed.")

    def sync(self) -> int:
        """Applies changes other contexts have persisted since the last call."""
        with self.exclusive():
            return self.listener.poll()

    # --- Collections ---

    @property
    def institutions(self) -> List[Institution]:
        return self.institution_repo.all()

    @property
    def departments(self) -> List[Department]:
        return self.department_repo.all()

    @property
    def all_forms(self) -> List[FormTemplate]:
        return self.form_repo.all()

    @property
    def forms(self) -> List[FormTemplate]:
        """The dashboard view: forms visible to the current session."""
        with self.exclusive():
            return visible_forms(self._current_user, self.form_repo.items)

    @property
    def responses(self) -> List[FormResponse]:
        return self.response_repo.all()

    @property
    def analyses(self) -> List[AnalysisRecord]:
        return self.analysis_repo.all()

    def replace_collection(self, name: str, items: list):
        repos = {
            'forms': self.form_repo,
            'responses': self.response_repo,
            'analyses': self.analysis_repo,
        }
        with self.exclusive():
            repos[name].replace_all(items)

    # --- Session ---

    @property
    def current_user(self) -> Optional[User]:
        return self._current_user

    def login(self, email: str, role: Optional[UserRole] = None,
              institution_id: Optional[str] = None, department_id: Optional[str] = None) -> User:
        user = SessionService.derive_user(email, role, institution_id, department_id)
        with self.exclusive():
            self._current_user = user
            self.store.save(StorageKey.SESSION, user, SessionUser)
        logger.info(f"[Session] {user.email} logged in as {user.role.value}.")
        return user

    def logout(self):
        with self.exclusive():
            self._current_user = None
            self.store.remove(StorageKey.SESSION)
        logger.info("[Session] Logged out.")

    def clear_session_locally(self):
        """Drops the in-memory session only; storage was already cleared elsewhere."""
        with self.exclusive():
            self._current_user = None

    # --- Mutators ---

    def add_institution(self, institution: Institution):
        with self.exclusive():
            self.institution_repo.add(institution)

    def update_institution(self, institution_id: str, updates: dict) -> Optional[Institution]:
        with self.exclusive():
            return self.institution_repo.update(institution_id, updates)

    def add_department(self, department: Department):
        with self.exclusive():
            self.department_repo.add(department)

    def add_form(self, form: FormTemplate, acting_user: Optional[User] = None) -> FormTemplate:
        """
        Stores a form under the acting user's tenant.
        Whatever institution the caller put on the form is overwritten when the
        acting user (the current session unless given) belongs to one.
        """
        with self.exclusive():
            actor = acting_user or self._current_user
            if actor is not None and actor.institution_id:
                form = form.model_copy(update={'institution_id': actor.institution_id})
            self.form_repo.add(form)
            return form

    def add_response(self, response: FormResponse):
        with self.exclusive():
            self.response_repo.add(response)

    def add_analysis(self, record: AnalysisRecord):
        with self.exclusive():
            self.analysis_repo.add(record)

    # --- Queries ---

    def get_form(self, form_id: str) -> Optional[FormTemplate]:
        with self.exclusive():
            return self.form_repo.get(form_id)

    def get_responses_by_form(self, form_id: str) -> List[FormResponse]:
        with self.exclusive():
            return self.response_repo.by_form(form_id)

    def get_analysis_by_form(self, form_id: str) -> Optional[AnalysisRecord]:
        with self.exclusive():
            return self.analysis_repo.by_form(form_id)

    def get_current_institution(self) -> Optional[Institution]:
        with self.exclusive():
            if self._current_user is None or not self._current_user.institution_id:
                return None
            return self.institution_repo.get(self._current_user.institution_id)

    def get_institution(self, institution_id: str) -> Optional[Institution]:
        with self.exclusive():
            return self.institution_repo.get(institution_id)

    def departments_for_institution(self, institution_id: Optional[str]) -> List[Department]:
        with self.exclusive():
            return self.department_repo.for_institution(institution_id)


STATE_EXTENSION_KEY = 'insightflow.state'
CHANNEL_EXTENSION_KEY = 'insightflow.channel'


def init_state(app) -> AppState:
    """
    (Re)creates the execution context of this app: tables, hydration, and a
    subscription on the process-wide broadcast channel.
    """
    channel = app.extensions.setdefault(CHANNEL_EXTENSION_KEY, BroadcastChannel())
    previous = app.extensions.pop(STATE_EXTENSION_KEY, None)
    if previous is not None:
        previous.close()

    with app.app_context():
        db.create_all()
        state = AppState.open(channel=channel, seed_defaults=app.config.get('SEED_DEMO_DATA', False))

    app.extensions[STATE_EXTENSION_KEY] = state
    return state


def get_state() -> AppState:
    """The AppState of the current app, created on first use."""
    app = current_app._get_current_object()
    state = app.extensions.get(STATE_EXTENSION_KEY)
    if state is None:
        state = init_state(app)
    return state
