# routers/auth.py — Registration, login and identity endpoints
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, UserRegister, UserLogin, TokenResponse, get_current_user, CurrentUser
from database import get_db_session
from errors import AuthenticationError, NotFoundError
from schemas import UserOut, user_to_out

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


@router.post("/register", response_model=UserOut, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Register a new user account"""
    user = await AuthService.register_user(user_data, db)
    return user_to_out(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise AuthenticationError("Invalid credentials")
    return AuthService.build_token_response(user)


@router.get("/me", response_model=UserOut)
async def get_current_user_info(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Get current authenticated user information"""
    db_user = await AuthService.get_user_by_id(user.id, db)
    if db_user is None:
        raise NotFoundError("User not found")
    return user_to_out(db_user)
