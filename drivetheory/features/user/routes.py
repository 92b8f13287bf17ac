from fastapi import APIRouter, Depends
from drivetheory.core.dependencies import get_current_user
from drivetheory.features.user.model import User
from drivetheory.features.user.schema import UserResponse

router = APIRouter()

@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Current user"""
    return current_user
