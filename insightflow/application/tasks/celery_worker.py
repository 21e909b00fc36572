from insightflow.app import create_app
from insightflow.extensions import celery  # noqa: F401  (worker entrypoint: celery -A ...celery_worker worker)

# The worker owns one Flask app, and with it one execution context of the store.
flask_app = create_app()
