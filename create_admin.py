"""
Create (or promote) an admin account from the command line.

    python create_admin.py [username]

The password is prompted for; an empty answer keeps DEFAULT_ADMIN_PASSWORD.
"""
import getpass
import logging
import sys
from drivetheory.core.config import settings
from drivetheory.core.database import SessionLocal, Base, engine
from drivetheory.core.security import get_password_hash
from drivetheory.features.user.model import User
from drivetheory.features.question.model import Question
from drivetheory.features.exam.model import Exam
from drivetheory.features.simulation.model import ExamSimulation, ExamSimulationLog
from drivetheory.features.payment.model import Payment
from drivetheory.features.audit.model import AdminAuditLog
from drivetheory.features.user.service import UserService

logger = logging.getLogger("create_admin")


def create_admin(username: str, password: str) -> User:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        existing = UserService.get_user_by_username(db, username)
        admin = UserService.ensure_default_admin(db, username, password)
        if existing is not None and password:
            admin.password_hash = get_password_hash(password)
            db.commit()
            logger.info("Password updated for %s", username)
        return admin
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    username = sys.argv[1] if len(sys.argv) > 1 else settings.DEFAULT_ADMIN_USERNAME
    password = getpass.getpass(f"Password for {username}: ") or settings.DEFAULT_ADMIN_PASSWORD
    admin = create_admin(username, password)
    logger.info("Admin ready: id=%s username=%s role=%s", admin.id, admin.username, admin.role.value)
