from typing import List

from insightflow.domain.schemas import FieldType, FormMetricsResponse, FormResponse, FormTemplate, RatingMetric


class AnalyticsService:
    """
    Service dedicated to calculating per-form metrics for the analytics view.
    """

    @staticmethod
    def rating_averages(form: FormTemplate, responses: List[FormResponse]) -> FormMetricsResponse:
        """
        Average score of every rating question, in form order.
        Missing, zero or non-numeric answers do not count towards the average.
        """
        form_responses = [r for r in responses if r.form_id == form.id]
        ratings = []

        for field in form.fields:
            if field.type != FieldType.RATING:
                continue

            scores = []
            for response in form_responses:
                try:
                    score = float(response.answers.get(field.id) or 0)
                except (TypeError, ValueError):
                    continue
                if score > 0:
                    scores.append(score)

            average = round(sum(scores) / len(scores), 1) if scores else 0.0
            ratings.append(RatingMetric(
                field_id=field.id,
                label=field.label,
                average=average,
                sample_size=len(scores)
            ))

        return FormMetricsResponse(
            form_id=form.id,
            total_responses=len(form_responses),
            ratings=ratings
        )
