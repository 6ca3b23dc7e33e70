from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials

from api.auth import (
    SESSION_COOKIE,
    SESSION_TTL_SECONDS,
    AuthUser,
    extract_token,
    forget_session,
    hash_password_async,
    require_auth,
    security,
    verify_password_async,
)
from api.responses import send_success
from api.schemas import SessionOut, SignInRequest, SignUpRequest, UserOut
from db.auth_repository import AuthRepository
from db.database import get_db
from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log

router = APIRouter()


def _session_response(session, user, status_code: int = 200):
    body = SessionOut(
        token=session.token,
        expires_at=session.expires_at,
        user=UserOut(id=user.id, email=user.email, name=user.name),
    )
    resp = send_success(body, status_code)
    resp.set_cookie(
        SESSION_COOKIE,
        session.token,
        max_age=SESSION_TTL_SECONDS,
        httponly=True,
        samesite="lax",
    )
    return resp


@router.post("/sign-up/email")
async def sign_up(req: SignUpRequest, db=Depends(get_db)):
    """
    Create an account and sign it in straight away.
    """
    repo = AuthRepository()
    if await repo.get_user_by_email(db, req.email):
        raise RagChatException("Email already registered", 400, ERROR_CODES["INVALID_INPUT"])

    user = await repo.create_user(
        db, req.email, await hash_password_async(req.password), req.name
    )
    session = await repo.create_session(db, user.id, SESSION_TTL_SECONDS)
    log.info("User signed up | user_id=%s", user.id)
    return _session_response(session, user, 201)


@router.post("/sign-in/email")
async def sign_in(req: SignInRequest, db=Depends(get_db)):
    repo = AuthRepository()
    user = await repo.get_user_by_email(db, req.email)
    if user is None or not await verify_password_async(req.password, user.password_hash):
        raise RagChatException("Invalid email or password", 401, ERROR_CODES["UNAUTHORIZED"])

    session = await repo.create_session(db, user.id, SESSION_TTL_SECONDS)
    log.info("User signed in | user_id=%s", user.id)
    return _session_response(session, user)


@router.post("/sign-out")
async def sign_out(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_db),
):
    token = extract_token(request, credentials)
    if token:
        await AuthRepository().delete_session(db, token)
        forget_session(token)
    resp = send_success({"signedOut": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.get("/get-session")
async def get_session(user: AuthUser = Depends(require_auth)):
    return send_success({"user": UserOut(id=user.id, email=user.email, name=user.name)})
