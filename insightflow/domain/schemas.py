from enum import Enum
from typing import Optional, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for every persisted entity.
    Python attributes are snake_case, the stored/served JSON is camelCase
    (institutionId, createdAt, ...), matching the layout already on disk.
    """
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


# ENUMS

class UserRole(str, Enum):
    SUPER_ADMIN = 'SUPER_ADMIN'
    INSTITUTION_ADMIN = 'INSTITUTION_ADMIN'
    DEPT_ADMIN = 'DEPT_ADMIN'


class FieldType(str, Enum):
    TEXT = 'text'
    RATING = 'rating'
    CHOICE = 'choice'
    YESNO = 'yesno'


class SentimentTrend(str, Enum):
    POSITIVE = 'positive'
    NEUTRAL = 'neutral'
    NEGATIVE = 'negative'


class Priority(str, Enum):
    HIGH = 'High'
    MEDIUM = 'Medium'
    LOW = 'Low'


# TENANCY

class Institution(CamelModel):
    """Tenant root. Owns departments and forms."""
    id: str
    name: str
    logo_url: str = ''
    primary_color: str = '#6366f1'
    secondary_color: str = '#e0e7ff'
    created_at: str


class InstitutionUpdate(CamelModel):
    """Partial branding update. Only the fields actually sent are merged."""
    name: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None


class Department(CamelModel):
    id: str
    name: str
    institution_id: str


class User(CamelModel):
    """
    The current session identity.
    Never stored as a managed collection; serialized only so a session
    survives a process restart.
    """
    id: str
    name: str
    email: str
    role: UserRole
    institution_id: Optional[str] = None
    department_id: Optional[str] = None


# FORMS

class FormField(CamelModel):
    id: str
    label: str
    type: FieldType
    options: Optional[List[str]] = None
    required: bool = False

    @model_validator(mode='after')
    def check_options(self):
        """Choice questions need options; every other type ignores them."""
        if self.type == FieldType.CHOICE:
            if not self.options:
                raise ValueError(f"Choice field '{self.id}' needs at least one option")
        else:
            self.options = None
        return self


class FormTemplate(CamelModel):
    id: str
    institution_id: str
    # None means the form is institution-wide
    department_id: Optional[str] = None
    title: str
    description: str = ''
    industry: str = ''
    created_at: str
    fields: List[FormField] = Field(default_factory=list)

    @field_validator('department_id', mode='before')
    @classmethod
    def empty_str_to_none(cls, v):
        if isinstance(v, str) and v.strip() == '':
            return None
        return v


class FormDraft(CamelModel):
    """
    A form as submitted by an editor (or produced by the AI generator) before
    it is saved. Everything may still be missing; FormService decides.
    """
    id: Optional[str] = None
    institution_id: Optional[str] = None
    department_id: Optional[str] = None
    title: Optional[str] = None
    description: str = ''
    industry: str = ''
    created_at: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)


AnswerValue = Union[str, int, float]


class FormResponse(CamelModel):
    """Immutable once submitted."""
    model_config = ConfigDict(frozen=True)

    id: str
    form_id: str
    answers: Dict[str, AnswerValue] = Field(default_factory=dict)
    submitted_at: str


# AI ANALYSIS

class Recommendation(CamelModel):
    title: str
    description: str
    priority: Priority


class AIAnalysisResult(CamelModel):
    summary: str
    sentiment_score: float = Field(..., ge=0, le=100)
    sentiment_trend: SentimentTrend
    key_themes: List[str]
    recommendations: List[Recommendation]


class AnalysisRecord(CamelModel):
    form_id: str
    result: AIAnalysisResult
    generated_at: str


class GeneratedField(CamelModel):
    """A question as the form generator returns it."""
    id: str
    label: str
    type: FieldType
    options: Optional[List[str]] = None
    required: bool = False


class GeneratedForm(CamelModel):
    """
    Shape the form generator must answer with.
    Anything else is rejected as a whole, never partially accepted.
    """
    title: str
    description: str
    industry: Optional[str] = None
    fields: List[GeneratedField]


# COLLECTION ADAPTERS (durable store serialization)

InstitutionList = TypeAdapter(List[Institution])
DepartmentList = TypeAdapter(List[Department])
FormList = TypeAdapter(List[FormTemplate])
ResponseList = TypeAdapter(List[FormResponse])
AnalysisList = TypeAdapter(List[AnalysisRecord])
SessionUser = TypeAdapter(Optional[User])


# API INPUT / OUTPUT SCHEMAS (DTOs)

class LoginRequest(CamelModel):
    email: Optional[str] = None
    role: Optional[UserRole] = None
    institution_id: Optional[str] = None
    department_id: Optional[str] = None


class InstitutionCreate(CamelModel):
    name: str
    logo_url: str = ''
    primary_color: str = '#6366f1'
    secondary_color: str = '#e0e7ff'


class DepartmentCreate(CamelModel):
    name: str


class SubmissionRequest(CamelModel):
    answers: Dict[str, AnswerValue] = Field(default_factory=dict)


class GenerateFormRequest(CamelModel):
    prompt: str
    save: bool = False


class RatingMetric(BaseModel):
    """Average score of one rating question, for the analytics bar chart."""
    field_id: str
    label: str
    average: float
    sample_size: int


class FormMetricsResponse(BaseModel):
    form_id: str
    total_responses: int
    ratings: List[RatingMetric]
