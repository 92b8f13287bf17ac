from fastapi import APIRouter
from drivetheory.features.auth.routes import router as auth_router
from drivetheory.features.user.routes import router as user_router
from drivetheory.features.question.routes import router as question_router
from drivetheory.features.exam.routes import router as exam_router
from drivetheory.features.simulation.routes import router as simulation_router
from drivetheory.features.payment.routes import router as payment_router
from drivetheory.features.admin.routes import router as admin_router

api_router = APIRouter()

api_router.include_router(auth_router, prefix="/auth", tags=["Authentication"])
api_router.include_router(user_router, prefix="/users", tags=["Users"])
api_router.include_router(question_router, prefix="/questions", tags=["Questions"])
api_router.include_router(exam_router, prefix="/exams", tags=["Exams"])
api_router.include_router(simulation_router, prefix="/simulations", tags=["Simulations"])
api_router.include_router(payment_router, prefix="/payments", tags=["Payments"])
api_router.include_router(admin_router, prefix="/admin", tags=["Admin"])
