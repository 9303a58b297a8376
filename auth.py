import logging
from datetime import timedelta

from fastapi import APIRouter, Depends
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, now, oid, serialize_doc
from errors import AuthError, InvalidState, NotFound, ValidationError
from notifications import NotificationSender, get_notifier, notify_quietly
from schemas import EmailBody, LoginBody, ResetPasswordBody, SignupBody, User
from security import create_tokens, generate_token, get_current_user, hash_password, verify_password
from users import public_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

VERIFICATION_TTL = timedelta(hours=24)
RESET_TTL = timedelta(hours=1)
RESET_SENT_MESSAGE = "If an account with that email exists, a password reset link has been sent."


def signup(database, notifier: NotificationSender, name: str, email: str, password: str) -> dict:
    email = email.lower()
    if database["user"].find_one({"email": email}):
        raise ValidationError("User with this email already exists")

    token = generate_token()
    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        email_verification_token=token,
        email_verification_expires=now() + VERIFICATION_TTL,
    )
    try:
        user_id = create_document("user", user, database)
    except DuplicateKeyError:
        raise ValidationError("User with this email already exists")
    logger.info("New user signed up: %s", user_id)

    notify_quietly(notifier.send_verification, email, user.name, token)

    saved = serialize_doc(database["user"].find_one({"_id": oid(user_id)}))
    return {"user": public_user(saved), "tokens": create_tokens(saved)}


def login(database, email: str, password: str) -> dict:
    user = database["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthError("Invalid email or password")
    user = serialize_doc(user)
    return {"user": public_user(user), "tokens": create_tokens(user)}


def verify_email(database, token: str):
    if not token:
        raise ValidationError("Verification token is required")
    user = database["user"].find_one({
        "email_verification_token": token,
        "email_verification_expires": {"$gt": now()},
    })
    if not user:
        raise ValidationError("Invalid or expired verification token")
    database["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "is_email_verified": True,
            "email_verification_token": None,
            "email_verification_expires": None,
            "updated_at": now(),
        }},
    )


def resend_verification(database, notifier: NotificationSender, email: str):
    email = email.lower()
    user = database["user"].find_one({"email": email})
    if not user:
        raise NotFound("User not found")
    if user.get("is_email_verified"):
        raise InvalidState("Email is already verified")
    token = generate_token()
    database["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"email_verification_token": token, "email_verification_expires": now() + VERIFICATION_TTL}},
    )
    notify_quietly(notifier.send_verification, email, user["name"], token)


def forgot_password(database, notifier: NotificationSender, email: str):
    # same answer whether or not the account exists
    email = email.lower()
    user = database["user"].find_one({"email": email})
    if not user:
        return
    token = generate_token()
    database["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_reset_token": token, "password_reset_expires": now() + RESET_TTL}},
    )
    notify_quietly(notifier.send_password_reset, email, user["name"], token)


def reset_password(database, token: str, new_password: str):
    if len(new_password) < 6:
        raise ValidationError("Password must be at least 6 characters long")
    user = database["user"].find_one({
        "password_reset_token": token,
        "password_reset_expires": {"$gt": now()},
    })
    if not user:
        raise ValidationError("Invalid or expired reset token")
    database["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "password_hash": hash_password(new_password),
            "password_reset_token": None,
            "password_reset_expires": None,
            "updated_at": now(),
        }},
    )
    logger.info("Password reset for user %s", user["_id"])


# ----------------------- Routes -----------------------
@router.post("/signup", status_code=201)
def signup_route(body: SignupBody, database=Depends(get_db), notifier=Depends(get_notifier)):
    data = signup(database, notifier, body.name, body.email, body.password)
    return {
        "success": True,
        "message": "Account created successfully! Please check your email to verify your account.",
        "data": data,
    }


@router.post("/login")
def login_route(body: LoginBody, database=Depends(get_db)):
    return {"success": True, "message": "Login successful", "data": login(database, body.email, body.password)}


@router.get("/verify-email")
def verify_email_route(token: str = "", database=Depends(get_db)):
    verify_email(database, token)
    return {"success": True, "message": "Email verified successfully! You can now use all features."}


@router.post("/resend-verification")
def resend_verification_route(body: EmailBody, database=Depends(get_db), notifier=Depends(get_notifier)):
    resend_verification(database, notifier, body.email)
    return {"success": True, "message": "Verification email sent successfully"}


@router.post("/forgot-password")
def forgot_password_route(body: EmailBody, database=Depends(get_db), notifier=Depends(get_notifier)):
    forgot_password(database, notifier, body.email)
    return {"success": True, "message": RESET_SENT_MESSAGE}


@router.post("/reset-password")
def reset_password_route(body: ResetPasswordBody, database=Depends(get_db)):
    reset_password(database, body.token, body.newPassword)
    return {"success": True, "message": "Password reset successful! You can now login with your new password."}


@router.get("/me")
def me_route(user=Depends(get_current_user)):
    return {"success": True, "data": public_user(user)}
