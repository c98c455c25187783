import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import config
import database
import mailer
from database import create_document, now
from schemas import User as UserSchema
from security import (RESET_PURPOSE, create_access_token, create_reset_token, decode_token, get_current_user,
                      get_optional_user, hash_password, public_user, verify_password)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ForgetPasswordBody(BaseModel):
    email: Optional[EmailStr] = None


class ResetPasswordBody(BaseModel):
    new_password: Optional[str] = None


class ChangePasswordBody(BaseModel):
    current_password: str
    new_password: str


# ----------------------- Helpers -----------------------
def check_password_length(password: str):
    if len(password) < config.MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters long",
        )


def create_user(body: RegisterBody, role: str) -> JSONResponse:
    if database.db["user"].find_one({"email": body.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    check_password_length(body.password)
    user = UserSchema(name=body.name, email=body.email, password=hash_password(body.password), role=role)
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    stored = database.db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("Registered %s (%s)", body.email, role)
    return JSONResponse(status_code=201, content={"token": create_access_token(stored), "user": public_user(stored)})


def authenticate(body: LoginBody) -> dict:
    user = database.db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


# ----------------------- Routes -----------------------
@router.post("/register")
def register(body: RegisterBody):
    return create_user(body, "user")


@router.post("/login")
def login(body: LoginBody):
    user = authenticate(body)
    return {"token": create_access_token(user), "user": public_user(user)}


@router.post("/admin/register")
def register_admin(body: RegisterBody, caller=Depends(get_optional_user)):
    # The first admin can sign up freely, every later one needs an admin token.
    if database.db["user"].count_documents({"role": "admin"}) > 0:
        if caller is None:
            raise HTTPException(status_code=401, detail="Not authorized, no token")
        if caller.get("role") != "admin":
            raise HTTPException(status_code=403, detail="Forbidden: Admins only")
    return create_user(body, "admin")


@router.post("/admin/login")
def login_admin(body: LoginBody):
    user = database.db["user"].find_one({"email": body.email})
    if user and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Access denied: Admins only")
    user = authenticate(body)
    return {"token": create_access_token(user), "user": public_user(user)}


@router.post("/forget-password")
async def forget_password(body: ForgetPasswordBody):
    if not body.email:
        raise HTTPException(status_code=400, detail="Please provide email")
    user = await run_in_threadpool(database.db["user"].find_one, {"email": body.email})
    if not user:
        raise HTTPException(status_code=400, detail="User not found please register")

    token = create_reset_token(body.email)
    reset_url = f"{config.FRONTEND_URL}/reset-password/{token}"
    try:
        await mailer.send_email(
            to=body.email,
            subject="Password Reset Request",
            text=f"Click on this link to generate your new password: {reset_url}",
        )
    except Exception:
        logger.exception("Could not send password reset mail to %s", body.email)
        raise HTTPException(status_code=500, detail="Something went wrong")
    return {"message": "Password reset link sent successfully to your email account"}


@router.post("/reset-password/{token}")
def reset_password(token: str, body: ResetPasswordBody):
    if not body.new_password:
        raise HTTPException(status_code=400, detail="Please provide password")
    check_password_length(body.new_password)
    try:
        payload = decode_token(token)
    except HTTPException:
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    if payload.get("purpose") != RESET_PURPOSE or not payload.get("email"):
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")

    res = database.db["user"].update_one(
        {"email": payload["email"]},
        {"$set": {"password": hash_password(body.new_password), "updated_at": now()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=400, detail="User not found please register")
    return {"message": "Password reset successfully"}


@router.post("/change-password")
def change_password(body: ChangePasswordBody, user=Depends(get_current_user)):
    if not verify_password(body.current_password, user.get("password")):
        raise HTTPException(status_code=400, detail="Current password does not match")
    check_password_length(body.new_password)
    database.db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(body.new_password), "updated_at": now()}},
    )
    return {"message": "Password changed successfully"}


@router.post("/token")
def current_user(user=Depends(get_current_user)):
    return {"user": public_user(user)}
