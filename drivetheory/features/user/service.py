import logging
from sqlalchemy.orm import Session
from drivetheory.features.user.model import User
from drivetheory.features.user.schema import UserCreate
from drivetheory.core.exceptions import ConflictError
from drivetheory.core.security import get_password_hash, verify_password
from drivetheory.models.enums import UserRole
from typing import Optional, List

logger = logging.getLogger(__name__)

class UserService:
    @staticmethod
    def create_user(db: Session, user_data: UserCreate, role: UserRole = UserRole.USER) -> User:
        """Register a new account"""
        existing_user = db.query(User).filter(User.username == user_data.username).first()
        if existing_user:
            raise ConflictError("Username already exists", username=user_data.username)

        db_user = User(
            username=user_data.username,
            password_hash=get_password_hash(user_data.password),
            role=role,
            is_active=True,
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        logger.info("New user registered: user_id=%s username=%s role=%s", db_user.id, db_user.username, role.value)
        return db_user

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        return db.query(User).filter(User.username == username).first()

    @staticmethod
    def get_all_users(db: Session) -> List[User]:
        return db.query(User).order_by(User.id.asc()).all()

    @staticmethod
    def authenticate_user(db: Session, username: str, password: str) -> Optional[User]:
        user = UserService.get_user_by_username(db, username)
        if not user:
            logger.info("Login failed: user %s not found", username)
            return None

        if not verify_password(password, user.password_hash):
            logger.info("Login failed: invalid password for user %s", username)
            return None

        return user

    @staticmethod
    def set_active(db: Session, user_id: int, is_active: bool) -> Optional[User]:
        """Activate or deactivate an account"""
        user = UserService.get_user_by_id(db, user_id)
        if not user:
            return None
        user.is_active = is_active
        db.commit()
        db.refresh(user)
        logger.info("User %s is_active set to %s", user_id, is_active)
        return user

    @staticmethod
    def ensure_default_admin(db: Session, username: str, password: str) -> User:
        """Create the admin account if missing, or promote and reactivate it"""
        admin = UserService.get_user_by_username(db, username)
        if not admin:
            admin = User(
                username=username,
                password_hash=get_password_hash(password),
                role=UserRole.ADMIN,
                is_active=True,
            )
            db.add(admin)
            db.commit()
            db.refresh(admin)
            logger.info("Created default admin account: %s", username)
            return admin

        changed = False
        if admin.role != UserRole.ADMIN:
            admin.role = UserRole.ADMIN
            changed = True
        if not admin.is_active:
            admin.is_active = True
            changed = True
        if changed:
            db.commit()
            db.refresh(admin)
            logger.info("Promoted existing account %s to admin", username)
        return admin
