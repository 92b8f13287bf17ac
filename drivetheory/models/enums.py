from enum import Enum

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class SimulationStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

class ExamSubmission(str, Enum):
    USER = "user"
    TIMEOUT = "timeout"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"

class PackageType(str, Enum):
    SINGLE = "single"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

class PaymentMethod(str, Enum):
    CARD = "card"
    MOBILE_MONEY = "mobilemoney"
    BANK_TRANSFER = "banktransfer"

class JourneyStatus(str, Enum):
    # ordered: a journey only ever moves forward through these
    INITIAL = "initial"
    EXAM_STARTED = "exam_started"
    PRACTICE_COMPLETED = "practice_completed"
    EXAM_COMPLETED = "exam_completed"

class AuditAction(str, Enum):
    QUESTION_CREATED = "question_created"
    QUESTIONS_IMPORTED = "questions_imported"
    QUESTION_UPDATED = "question_updated"
    QUESTION_DELETED = "question_deleted"
    USER_ACTIVATED = "user_activated"
    USER_DEACTIVATED = "user_deactivated"
    PAYMENT_STATUS_CHANGED = "payment_status_changed"
