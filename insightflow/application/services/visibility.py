from typing import List, Optional

from insightflow.domain.schemas import FormTemplate, User, UserRole


def is_form_visible(user: Optional[User], form: FormTemplate) -> bool:
    if user is None:
        return False
    if user.role == UserRole.SUPER_ADMIN:
        return True
    if form.institution_id != user.institution_id:
        return False
    # Institution-wide forms stay visible to department admins
    if user.role == UserRole.DEPT_ADMIN and form.department_id and form.department_id != user.department_id:
        return False
    return True


def visible_forms(user: Optional[User], forms: List[FormTemplate]) -> List[FormTemplate]:
    """
    The form list a dashboard may show for this session, in collection order.
    Always recomputed from its inputs; nothing is cached.
    """
    if user is None:
        return []
    return [form for form in forms if is_form_visible(user, form)]
