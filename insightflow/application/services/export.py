import re
from typing import List

import pandas as pd

from insightflow.domain.schemas import FormResponse, FormTemplate

SUBMITTED_AT_COLUMN = 'Submitted At'


class ExportService:
    """
    Read-only tabular projection of a form's responses.
    Rows are ordered by submission time, oldest first; columns are the
    submission timestamp followed by the questions in form order.
    """

    @staticmethod
    def build_frame(form: FormTemplate, responses: List[FormResponse]) -> pd.DataFrame:
        ordered = sorted(
            (r for r in responses if r.form_id == form.id),
            key=lambda r: r.submitted_at,
        )
        columns = [SUBMITTED_AT_COLUMN] + [f.label for f in form.fields]
        rows = [
            [r.submitted_at] + [r.answers.get(f.id) for f in form.fields]
            for r in ordered
        ]
        return pd.DataFrame(rows, columns=columns, dtype=object)

    @staticmethod
    def to_csv(form: FormTemplate, responses: List[FormResponse]) -> str:
        return ExportService.build_frame(form, responses).to_csv(index=False)

    @staticmethod
    def filename(form: FormTemplate) -> str:
        safe_title = re.sub(r'[^A-Za-z0-9_-]+', '_', form.title).strip('_') or form.id
        return f"{safe_title}_responses.csv"
