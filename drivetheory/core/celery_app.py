from celery import Celery
from drivetheory.core.config import settings
# workers never import main, so the mappers are registered here
from drivetheory.features.user.model import User
from drivetheory.features.question.model import Question
from drivetheory.features.exam.model import Exam
from drivetheory.features.simulation.model import ExamSimulation, ExamSimulationLog
from drivetheory.features.payment.model import Payment
from drivetheory.features.audit.model import AdminAuditLog

celery_app = Celery(
    "drivetheory",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["drivetheory.services.session_sweeper"],
)

celery_app.conf.update(
    task_ignore_result=True,
    beat_schedule={
        "sweep-abandoned-sessions": {
            "task": "drivetheory.services.session_sweeper.sweep_sessions",
            "schedule": float(settings.SWEEP_INTERVAL_SECONDS),
        },
    },
)
