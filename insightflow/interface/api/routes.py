import uuid

from flask import Blueprint, Response, request, jsonify, current_app
from pydantic import ValidationError

from insightflow.application.services.analytics import AnalyticsService
from insightflow.application.services.app_state import AppState, get_state, utc_now_iso
from insightflow.application.services.export import ExportService
from insightflow.application.services.forms import FormService
from insightflow.application.services.insights import InsightService
from insightflow.application.services.session import SessionService
from insightflow.application.services.submissions import SubmissionService
from insightflow.application.services.visibility import is_form_visible
from insightflow.application.tasks.ai_tasks import async_analyze_form
from insightflow.domain.errors import AccessDenied, InsightFlowError, NotAuthenticated, NotFoundError, ValidationFailure
from insightflow.domain.schemas import (
    Department, DepartmentCreate, FormDraft, FormTemplate, GenerateFormRequest, Institution,
    InstitutionCreate, InstitutionUpdate, LoginRequest, SubmissionRequest, UserRole
)

api_bp = Blueprint('api', __name__, url_prefix='/api/v1')

DEFAULT_BRAND_COLOR = '#4f46e5'


# --- Error handling ---

@api_bp.errorhandler(InsightFlowError)
def handle_domain_error(e: InsightFlowError):
    body = {"error": e.message}
    if isinstance(e, ValidationFailure) and e.details:
        body["details"] = e.details
    return jsonify(body), e.status_code


@api_bp.errorhandler(ValidationError)
def handle_schema_error(e: ValidationError):
    details = [f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()]
    return jsonify({"error": "Invalid request payload", "details": details}), 400


# --- Helpers ---

def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _require_session(*roles):
    user = get_state().current_user
    if user is None:
        raise NotAuthenticated("Please log in first.")
    if roles and user.role not in roles:
        raise AccessDenied("Access Denied")
    return user


def _visible_form(state: AppState, form_id: str) -> FormTemplate:
    """A form the current session may manage; anything else looks like it does not exist."""
    form = state.get_form(form_id)
    if form is None or not is_form_visible(state.current_user, form):
        raise NotFoundError(f"Form '{form_id}' not found.")
    return form


def _dump(items):
    return [item.to_json_dict() for item in items]


# --- Session ---

@api_bp.route('/session/login', methods=['POST'])
def login():
    """
    Self-asserted login: the caller states who they are.
    Institution users without an email get a placeholder one.
    """
    data = LoginRequest.model_validate(_payload())
    email = data.email
    if not email:
        if not data.institution_id:
            raise ValidationFailure("Please select an institution")
        email = SessionService.default_email_for(data.institution_id)

    user = get_state().login(email, data.role, data.institution_id, data.department_id)
    return jsonify(user.to_json_dict())


@api_bp.route('/session/logout', methods=['POST'])
def logout():
    get_state().logout()
    return jsonify({"status": "logged_out"})


@api_bp.route('/session', methods=['GET'])
def current_session():
    user = get_state().current_user
    return jsonify({"user": user.to_json_dict() if user else None})


# --- Institutions ---

@api_bp.route('/institutions', methods=['GET'])
def list_institutions():
    _require_session(UserRole.SUPER_ADMIN)
    return jsonify(_dump(get_state().institutions))


@api_bp.route('/institutions', methods=['POST'])
def create_institution():
    """Onboards a new tenant (super admin only)."""
    _require_session(UserRole.SUPER_ADMIN)
    data = InstitutionCreate.model_validate(_payload())
    if not data.name.strip():
        raise ValidationFailure("Institution name is required.")

    institution = Institution(
        id=str(uuid.uuid4()),
        created_at=utc_now_iso(),
        **data.model_dump()
    )
    get_state().add_institution(institution)
    return jsonify(institution.to_json_dict()), 201


@api_bp.route('/institution', methods=['GET'])
def current_institution():
    _require_session()
    institution = get_state().get_current_institution()
    if institution is None:
        raise NotFoundError("No institution for this session.")
    return jsonify(institution.to_json_dict())


@api_bp.route('/institutions/<institution_id>', methods=['PATCH'])
def update_institution(institution_id):
    """Branding update. Institution admins may only touch their own tenant."""
    user = _require_session(UserRole.SUPER_ADMIN, UserRole.INSTITUTION_ADMIN)
    if user.role != UserRole.SUPER_ADMIN and user.institution_id != institution_id:
        raise AccessDenied("Access Denied")

    updates = InstitutionUpdate.model_validate(_payload()).model_dump(exclude_unset=True)
    updated = get_state().update_institution(institution_id, updates)
    if updated is None:
        raise NotFoundError(f"Institution '{institution_id}' not found.")
    return jsonify(updated.to_json_dict())


# --- Departments ---

@api_bp.route('/departments', methods=['GET'])
def list_departments():
    user = _require_session()
    state = get_state()
    institution_id = request.args.get('institution_id') if user.role == UserRole.SUPER_ADMIN else user.institution_id
    return jsonify(_dump(state.departments_for_institution(institution_id)))


@api_bp.route('/departments', methods=['POST'])
def create_department():
    user = _require_session(UserRole.INSTITUTION_ADMIN)
    data = DepartmentCreate.model_validate(_payload())
    if not data.name.strip():
        raise ValidationFailure("Department name is required.")

    department = Department(id=str(uuid.uuid4()), name=data.name.strip(), institution_id=user.institution_id)
    get_state().add_department(department)
    return jsonify(department.to_json_dict()), 201


# --- Forms ---

@api_bp.route('/forms', methods=['GET'])
def list_forms():
    """Forms visible to the current session (empty when logged out)."""
    return jsonify(_dump(get_state().forms))


@api_bp.route('/forms', methods=['POST'])
def create_form():
    _require_session()
    draft = FormDraft.model_validate(_payload())
    form = FormService.create_form(get_state(), draft)
    return jsonify(form.to_json_dict()), 201


@api_bp.route('/forms/generate', methods=['POST'])
def generate_form():
    """
    Asks the AI for a form draft. The draft is returned for editing unless
    'save' is set, in which case it is stored right away.
    """
    _require_session()
    data = GenerateFormRequest.model_validate(_payload())
    state = get_state()

    if data.save:
        form = InsightService.generate_and_save(state, data.prompt)
        return jsonify(form.to_json_dict()), 201

    draft = InsightService.generate_draft(data.prompt)
    return jsonify(draft.to_json_dict())


@api_bp.route('/forms/<form_id>', methods=['GET'])
def get_form(form_id):
    _require_session()
    return jsonify(_visible_form(get_state(), form_id).to_json_dict())


@api_bp.route('/forms/<form_id>/responses', methods=['GET'])
def list_responses(form_id):
    _require_session()
    state = get_state()
    form = _visible_form(state, form_id)
    return jsonify(_dump(state.get_responses_by_form(form.id)))


@api_bp.route('/forms/<form_id>/export.csv', methods=['GET'])
def export_responses(form_id):
    _require_session()
    state = get_state()
    form = _visible_form(state, form_id)
    csv_content = ExportService.to_csv(form, state.get_responses_by_form(form.id))
    return Response(
        csv_content,
        mimetype='text/csv',
        headers={"Content-Disposition": f'attachment; filename="{ExportService.filename(form)}"'}
    )


@api_bp.route('/forms/<form_id>/metrics', methods=['GET'])
def form_metrics(form_id):
    _require_session()
    state = get_state()
    form = _visible_form(state, form_id)
    metrics = AnalyticsService.rating_averages(form, state.get_responses_by_form(form.id))
    return jsonify(metrics.model_dump())


@api_bp.route('/forms/<form_id>/analysis', methods=['GET'])
def get_analysis(form_id):
    _require_session()
    state = get_state()
    form = _visible_form(state, form_id)
    record = state.get_analysis_by_form(form.id)
    return jsonify({"analysis": record.to_json_dict() if record else None})


@api_bp.route('/forms/<form_id>/analysis', methods=['POST'])
def run_analysis(form_id):
    """
    Runs the AI analysis inline, or enqueues it with ?async=1.
    Failures come back as 502 and leave any previous analysis in place.
    """
    _require_session()
    state = get_state()
    form = _visible_form(state, form_id)

    if request.args.get('async', type=int):
        task = async_analyze_form.delay(form.id)
        current_app.logger.info(f"Analysis for form {form.id} queued as task {task.id}")
        return jsonify({"task_id": task.id, "status": "queued"}), 202

    record = InsightService.run_analysis(state, form.id)
    return jsonify(record.to_json_dict()), 201


# --- Public submission (no session) ---

@api_bp.route('/public/forms/<form_id>', methods=['GET'])
def public_form(form_id):
    state = get_state()
    form = SubmissionService.get_public_form(state, form_id)
    institution = state.get_institution(form.institution_id)
    branding = {
        "name": institution.name if institution else None,
        "logoUrl": institution.logo_url if institution else None,
        "primaryColor": institution.primary_color if institution else DEFAULT_BRAND_COLOR,
    }
    return jsonify({"form": form.to_json_dict(), "branding": branding})


@api_bp.route('/public/forms/<form_id>/responses', methods=['POST'])
def submit_response(form_id):
    data = SubmissionRequest.model_validate(_payload())
    response = SubmissionService.submit(get_state(), form_id, data.answers)
    return jsonify(response.to_json_dict()), 201
