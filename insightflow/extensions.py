from celery import Celery
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Bound to the Flask app in create_app()
db = SQLAlchemy()
migrate = Migrate()


def make_celery(app_name='insightflow'):
    """
    Celery app for the AI jobs.
    Broker and result backend are filled in from the Flask config by create_app().
    """
    app = Celery(app_name, include=['insightflow.application.tasks.ai_tasks'])
    app.conf.update(
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        task_acks_late=False,
    )
    return app


celery = make_celery()
