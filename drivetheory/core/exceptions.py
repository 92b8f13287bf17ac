"""Domain errors raised by the feature services.

Every error carries the HTTP status the API answers with and a short
machine-readable ``code`` so clients can branch on it (route to checkout,
resume an existing session, offer a fresh start).
"""
from fastapi import status


class ServiceError(ValueError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "bad_request"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class PaymentRequiredError(ServiceError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "payment_required"


class PermissionDeniedError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class ActiveExamExistsError(ConflictError):
    code = "active_exam_exists"


class ActiveSimulationExistsError(ConflictError):
    code = "active_simulation_exists"


class QuestionBankEmptyError(ConflictError):
    code = "question_bank_empty"


class ExamAlreadySubmittedError(ConflictError):
    code = "exam_already_submitted"


class SessionCompletedError(ConflictError):
    code = "session_completed"


class InvalidAnswersError(ServiceError):
    code = "invalid_answers"


class RecoveryExpiredError(ServiceError):
    status_code = status.HTTP_410_GONE
    code = "recovery_expired"


class PaymentGatewayError(ServiceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_gateway_error"
