from insightflow.application.services.session import SUPER_ADMIN_EMAIL, SessionService
from insightflow.application.services.storage import LoadStatus, StorageKey
from insightflow.domain.schemas import SessionUser, UserRole


class TestDeriveUser:
    """
    Level 1 Tests: identity derivation at login (no credentials involved).
    """

    def test_super_admin_email(self):
        """
        GIVEN the distinguished super-admin email
        WHEN a user is derived (even with other claims)
        THEN role is SUPER_ADMIN, id is fixed and there is no tenant
        """
        user = SessionService.derive_user(SUPER_ADMIN_EMAIL, UserRole.DEPT_ADMIN, "inst-9", "d-1")

        assert user.role == UserRole.SUPER_ADMIN
        assert user.id == "u-admin"
        assert user.name == "super"
        assert user.institution_id is None
        assert user.department_id is None

    def test_defaults_for_regular_email(self):
        user = SessionService.derive_user("maria@hotel.com")

        assert user.role == UserRole.INSTITUTION_ADMIN
        assert user.institution_id == "inst-1"
        assert user.department_id is None
        assert user.name == "maria"
        assert user.id.startswith("u-")

    def test_fresh_id_per_login(self):
        first = SessionService.derive_user("maria@hotel.com")
        second = SessionService.derive_user("maria@hotel.com")
        assert first.id != second.id

    def test_dept_admin_keeps_department(self):
        user = SessionService.derive_user("ops@hotel.com", UserRole.DEPT_ADMIN, "inst-2", "d-ops")

        assert user.role == UserRole.DEPT_ADMIN
        assert user.institution_id == "inst-2"
        assert user.department_id == "d-ops"

    def test_department_dropped_for_institution_admin(self):
        user = SessionService.derive_user("boss@hotel.com", UserRole.INSTITUTION_ADMIN, "inst-2", "d-ops")
        assert user.department_id is None

    def test_default_email_for_institution(self):
        assert SessionService.default_email_for("inst-3") == "admin@inst-3.com"


class TestSessionLifecycle:
    """
    Level 2 Tests: anonymous <-> authenticated transitions on an AppState.
    """

    def test_login_persists_session(self, state):
        user = state.login("maria@hotel.com", UserRole.INSTITUTION_ADMIN, "inst-1")

        assert state.current_user == user
        assert state.store.load(StorageKey.SESSION, None, SessionUser) == user

    def test_relogin_overwrites(self, state):
        state.login("maria@hotel.com", institution_id="inst-1")
        second = state.login("joao@clinic.com", institution_id="inst-2")

        assert state.current_user == second
        assert state.store.load(StorageKey.SESSION, None, SessionUser).email == "joao@clinic.com"

    def test_logout_clears_memory_and_storage(self, state):
        state.login("maria@hotel.com")
        state.logout()

        assert state.current_user is None
        assert state.store.try_load(StorageKey.SESSION).status == LoadStatus.MISSING

    def test_session_survives_rehydration(self, state):
        """
        GIVEN a logged-in context
        WHEN the context is hydrated again from storage (process restart)
        THEN the same session is restored
        """
        user = state.login("maria@hotel.com", UserRole.DEPT_ADMIN, "inst-1", "d-ops")
        state.hydrate()
        assert state.current_user == user
