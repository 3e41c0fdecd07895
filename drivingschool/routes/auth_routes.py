import logging
import secrets
from datetime import datetime, timedelta

import jwt
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, field_validator

from drivingschool.auth import jwt_handler
from drivingschool.auth.dependencies import get_current_user, get_storage
from drivingschool.auth.identity import merge_oidc_identity
from drivingschool.auth.oidc import OidcError, get_oidc_client
from drivingschool.auth.passwords import hash_password, verify_password
from drivingschool.core import config
from drivingschool.models.user import User
from drivingschool.storage import DatabaseStorage

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])

MIN_PASSWORD_LENGTH = 8


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if '@' not in normalized or normalized.startswith('@') or normalized.endswith('@'):
        raise ValueError('A valid email address is required.')
    return normalized


class RegisterRequest(BaseModel):
    email: str
    password: str
    first_name: str
    last_name: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
        return value

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized


class LocalLoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class UserResponse(BaseModel):
    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    role: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=config.SESSION_COOKIE_NAME,
        value=token,
        max_age=config.SESSION_TTL_MINUTES * 60,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite='lax',
    )


def start_session(storage: DatabaseStorage, response: Response, user: User, auth_method: str) -> str:
    now = datetime.now()
    pruned = storage.delete_expired_auth_sessions(now)
    if pruned:
        logger.info('Pruned %s expired login sessions', pruned)
    expires_at = now + timedelta(minutes=config.SESSION_TTL_MINUTES)
    auth_session = storage.create_auth_session(user.id, auth_method, expires_at)
    token = jwt_handler.create_access_token(subject=user.id, session_id=auth_session.id)
    set_session_cookie(response, token)
    return token


def ensure_oidc_enabled() -> None:
    if not config.oidc_enabled():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Federated login is not configured.',
        )


@router.post('/register', status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, storage: DatabaseStorage = Depends(get_storage)):
    if storage.get_user_by_email(data.email) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email already registered')

    user = storage.create_user(
        email=data.email,
        password=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role='student',
    )
    logger.info('Registered local user %s', user.id)
    return {'message': 'Registration successful', 'user_id': user.id}


@router.post('/local-login')
def local_login(data: LocalLoginRequest, response: Response, storage: DatabaseStorage = Depends(get_storage)):
    user = storage.get_user_by_email(data.email)
    if user is None or not verify_password(data.password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid email or password')
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is disabled')

    start_session(storage, response, user, 'local')
    logger.info('Local login for user %s', user.id)
    return {'message': 'Login successful', 'user': UserResponse.model_validate(user)}


@router.get('/login')
def oidc_login():
    ensure_oidc_enabled()
    nonce = secrets.token_urlsafe(16)
    state = jwt_handler.create_state_token(nonce)
    response = RedirectResponse(url=get_oidc_client().build_authorize_url(state, nonce), status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        key=config.OIDC_NONCE_COOKIE_NAME,
        value=nonce,
        max_age=config.OIDC_STATE_TTL_MINUTES * 60,
        httponly=True,
        secure=config.SESSION_COOKIE_SECURE,
        samesite='lax',
    )
    return response


@router.get('/callback')
def oidc_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    storage: DatabaseStorage = Depends(get_storage),
):
    ensure_oidc_enabled()
    if error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'Identity provider error: {error}')
    if not code or not state:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Missing authorization code or state')

    try:
        state_payload = jwt_handler.decode_state_token(state)
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid or expired login state') from exc

    browser_nonce = request.cookies.get(config.OIDC_NONCE_COOKIE_NAME) or ''
    expected_nonce = str(state_payload.get('nonce') or '')
    if not browser_nonce or not secrets.compare_digest(browser_nonce, expected_nonce):
        logger.warning('Rejected federated login whose state was not issued to this browser')
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Login state does not match this browser')

    client = get_oidc_client()
    tokens = client.exchange_code(code)
    claims = client.fetch_userinfo(tokens['access_token'])

    try:
        user = merge_oidc_identity(storage, claims)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is disabled')

    response = RedirectResponse(url=config.FRONTEND_BASE_URL, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(config.OIDC_NONCE_COOKIE_NAME)
    start_session(storage, response, user, 'oidc')
    return response


@router.get('/logout')
def logout(request: Request, storage: DatabaseStorage = Depends(get_storage)):
    auth_method = None
    token = request.cookies.get(config.SESSION_COOKIE_NAME)
    if token:
        try:
            payload = jwt_handler.decode_access_token(token)
        except jwt.InvalidTokenError:
            logger.debug('Ignoring invalid session cookie on logout')
            payload = {}

        session_id = payload.get('sid')
        auth_session = storage.get_auth_session(session_id) if session_id else None
        if auth_session is not None:
            auth_method = auth_session.auth_method
            storage.delete_auth_session(auth_session.id)

    redirect_url = config.FRONTEND_BASE_URL
    if auth_method == 'oidc' and config.oidc_enabled():
        post_logout_redirect = (
            config.FRONTEND_BASE_URL if config.FRONTEND_BASE_URL.startswith('http') else str(request.base_url)
        )
        try:
            redirect_url = get_oidc_client().build_end_session_url(post_logout_redirect) or redirect_url
        except OidcError:
            logger.warning('Could not build the end-session URL, redirecting locally')

    response = RedirectResponse(url=redirect_url, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(config.SESSION_COOKIE_NAME)
    return response


@router.get('/auth/user', response_model=UserResponse)
def get_authenticated_user(current_user: User = Depends(get_current_user)):
    return current_user
