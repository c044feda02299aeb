from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, get_service_client
from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, get_current_user
from campusnet.mailer import Mailer, get_mailer
from campusnet.schemas import (
    AuthResponse,
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyOtpRequest,
)
from campusnet.services import auth_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201, response_model=AuthResponse)
async def register(
    data: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    return await auth_service.register(db, data, mailer)


@router.post("/login", response_model=AuthResponse)
async def login(
    data: LoginRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    result = await auth_service.login(db, data)
    background_tasks.add_task(
        auth_service.send_login_notice, mailer, result["email"], result["full_name"], result["last_login"]
    )
    return result


@router.get("/me", response_model=UserResponse)
async def me(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    data = await auth_service.get_me(db, user.id)
    if not data:
        raise HTTPException(status_code=404, detail="User not found")
    return data


@router.post("/logout")
async def logout(user: CurrentUser = Depends(get_current_user)):
    await auth_service.logout(user.id)
    return {"message": "User logged out successfully"}


@router.get("/verify")
async def verify_token(user: CurrentUser = Depends(get_current_user)):
    return {"message": "Token is valid", "id": user.id, "email": user.email, "role": user.role}


@router.get("/verify-email/{token}")
async def verify_email(
    token: str,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = await auth_service.verify_email(db, token, mailer)
    return {"message": "Email verified successfully", "user": user}


@router.post("/resend-verification")
async def resend_verification(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    await auth_service.resend_verification(db, user.id, mailer)
    return {"message": "Verification email sent. Please check your inbox."}


@router.delete("/delete-account")
async def delete_account(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    outcome = await auth_service.delete_account(db, user.id, user.token, client)
    return {
        "message": "Account deleted successfully. All your data has been removed.",
        "services": outcome,
    }


@router.post("/forgot-password")
async def forgot_password(
    data: EmailRequest,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    await auth_service.forgot_password(db, data.email, mailer)
    return {"message": "Password reset OTP sent to your email. Valid for 10 minutes."}


@router.post("/verify-reset-otp")
async def verify_reset_otp(data: VerifyOtpRequest, db: AsyncSession = Depends(get_db)):
    await auth_service.verify_reset_otp(db, data.email, data.otp)
    return {"message": "OTP verified successfully. You can now reset your password."}


@router.post("/reset-password")
async def reset_password(
    data: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    await auth_service.reset_password(db, data, mailer)
    return {"message": "Password reset successful. You can now log in with your new password."}
