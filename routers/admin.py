"""Admin API router."""
from fastapi import APIRouter, Depends

from dependencies import get_admin_service
from schemas import ErrorResponse, LoginRequest, LoginResponse
from services.admin_service import AdminService

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}}
)
def login(request: LoginRequest, admin: AdminService = Depends(get_admin_service)):
    """Check admin credentials. Returns only a success flag; no token or session is issued."""
    admin.login(request.username, request.password)
    return LoginResponse(message="Login successful")
