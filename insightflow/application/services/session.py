import uuid
from typing import Optional

from insightflow.domain.schemas import User, UserRole

SUPER_ADMIN_EMAIL = 'super@insightflow.ai'
SUPER_ADMIN_ID = 'u-admin'
DEFAULT_INSTITUTION_ID = 'inst-1'


class SessionService:
    """
    Identity derivation for the login action.
    There is no credential check: the caller's claims about role and tenant
    are trusted as given.
    """

    @staticmethod
    def derive_user(email: str,
                    role: Optional[UserRole] = None,
                    institution_id: Optional[str] = None,
                    department_id: Optional[str] = None) -> User:
        """
        Builds the session User from the login inputs.

        - The super-admin email always yields SUPER_ADMIN with a fixed id and no tenant.
        - Anyone else gets the requested role (INSTITUTION_ADMIN by default),
          the requested institution (the default tenant if omitted) and a fresh id.
        - A department is only kept for DEPT_ADMIN sessions.
        """
        email = (email or '').strip()
        name = email.split('@')[0]

        if email.lower() == SUPER_ADMIN_EMAIL:
            return User(
                id=SUPER_ADMIN_ID,
                name=name,
                email=email,
                role=UserRole.SUPER_ADMIN,
            )

        resolved_role = UserRole(role) if role else UserRole.INSTITUTION_ADMIN
        return User(
            id=f"u-{uuid.uuid4().hex[:12]}",
            name=name,
            email=email,
            role=resolved_role,
            institution_id=institution_id or DEFAULT_INSTITUTION_ID,
            department_id=department_id if resolved_role == UserRole.DEPT_ADMIN else None,
        )

    @staticmethod
    def default_email_for(institution_id: str) -> str:
        """Placeholder login email when an institution user does not type one."""
        return f"admin@{institution_id}.com"
