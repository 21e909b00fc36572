import logging
from typing import List, Optional

from pydantic import TypeAdapter

from insightflow.application.services.storage import DurableStore, LoadStatus, StorageKey
from insightflow.domain.schemas import (
    AnalysisList, AnalysisRecord, Department, DepartmentList, FormList, FormResponse,
    FormTemplate, Institution, InstitutionList, ResponseList
)

logger = logging.getLogger(__name__)


class CollectionRepository:
    """
    In-memory list of one entity type, mirrored to a single durable store key.
    New entities go to the front (newest first) and every mutation persists
    the whole list.
    """
    key: str = None
    adapter: TypeAdapter = None

    def __init__(self, store: DurableStore):
        self.store = store
        self.items: list = []

    def hydrate(self, default: Optional[list] = None, persist_default: bool = False):
        """Loads the stored list, falling back to default when missing or corrupt."""
        missing = self.store.try_load(self.key, self.adapter).status == LoadStatus.MISSING
        self.items = list(self.store.load(self.key, default or [], self.adapter))
        if persist_default and missing and self.items:
            self.persist()
        return self.items

    def persist(self) -> int:
        return self.store.save(self.key, self.items, self.adapter)

    def prepend(self, item) -> int:
        self.items = [item] + self.items
        return self.persist()

    def replace_all(self, items: list):
        """Swaps the in-memory list without writing (used for external updates)."""
        self.items = list(items)

    def all(self) -> list:
        return list(self.items)


class InstitutionRepository(CollectionRepository):
    key = StorageKey.INSTITUTIONS
    adapter = InstitutionList

    def add(self, institution: Institution) -> int:
        return self.prepend(institution)

    def get(self, institution_id: str) -> Optional[Institution]:
        return next((i for i in self.items if i.id == institution_id), None)

    def update(self, institution_id: str, updates: dict) -> Optional[Institution]:
        """
        Merges updates into the matching institution.
        Unknown ids are a no-op (nothing changes, the list is still persisted).
        """
        updated = None
        merged = []
        for institution in self.items:
            if institution.id == institution_id:
                # id is the key; a partial update never moves an institution
                changes = {k: v for k, v in updates.items() if k != 'id'}
                institution = Institution.model_validate({**institution.model_dump(), **changes})
                updated = institution
            merged.append(institution)
        self.items = merged
        self.persist()
        if updated is None:
            logger.info(f"[Store] update_institution: '{institution_id}' not found, nothing merged.")
        return updated


class DepartmentRepository(CollectionRepository):
    key = StorageKey.DEPARTMENTS
    adapter = DepartmentList

    def add(self, department: Department) -> int:
        return self.prepend(department)

    def for_institution(self, institution_id: Optional[str]) -> List[Department]:
        return [d for d in self.items if d.institution_id == institution_id]


class FormRepository(CollectionRepository):
    key = StorageKey.FORMS
    adapter = FormList

    def add(self, form: FormTemplate) -> int:
        return self.prepend(form)

    def get(self, form_id: str) -> Optional[FormTemplate]:
        return next((f for f in self.items if f.id == form_id), None)


class ResponseRepository(CollectionRepository):
    """
    Append-only: responses are never updated or deleted once submitted.
    Readers get copies, so a caller editing answers cannot touch the stored ones.
    """
    key = StorageKey.RESPONSES
    adapter = ResponseList

    def add(self, response: FormResponse) -> int:
        return self.prepend(response)

    def all(self) -> List[FormResponse]:
        return [r.model_copy(deep=True) for r in self.items]

    def by_form(self, form_id: str) -> List[FormResponse]:
        return [r.model_copy(deep=True) for r in self.items if r.form_id == form_id]


class AnalysisRepository(CollectionRepository):
    """At most one record per form; a new one replaces the previous."""
    key = StorageKey.ANALYSES
    adapter = AnalysisList

    def add(self, record: AnalysisRecord) -> int:
        self.items = [record] + [a for a in self.items if a.form_id != record.form_id]
        return self.persist()

    def by_form(self, form_id: str) -> Optional[AnalysisRecord]:
        return next((a for a in self.items if a.form_id == form_id), None)
