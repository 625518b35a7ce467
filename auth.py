# auth.py
import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from jose import jwt, JWTError
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status, APIRouter
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ISSUER, JWT_AUDIENCE
from database import get_session
from models import User
from timeutils import utcnow

logger = logging.getLogger(__name__)


# --- 1. Объекты, создаются один раз при загрузке модуля ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# Простой security-объект, дает кнопку "Authorize" в Swagger
security = HTTPBearer()

router = APIRouter(
    prefix='/auth',
    tags=['Authentication']
)


# --- 2. Модели Pydantic ---
class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    expires_at: datetime
    username: str
    full_name: Optional[str] = None


class UserInfo(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_admin: bool


# --- 3. Утилиты ---
def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверяет, соответствует ли обычный пароль хешированному."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Например, "неиспользуемый" пароль у Telegram-аккаунтов
        return False


def get_password_hash(password: str) -> str:
    """Хеширует пароль."""
    return pwd_context.hash(password)


def create_access_token(user: User) -> tuple[str, datetime]:
    """Создает подписанный токен с именем и id пользователя. Возвращает токен и время истечения."""
    expires_at = datetime.now(UTC) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {
        'sub': user.username,
        'user_id': user.id,
        'iss': JWT_ISSUER,
        'aud': JWT_AUDIENCE,
        'exp': expires_at,
    }
    token = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return token, expires_at


async def get_user_by_username(session: AsyncSession, username: str) -> User | None:
    return await session.scalar(select(User).where(User.username == username))


async def login(session: AsyncSession, username: str, password: str) -> TokenResponse | None:
    """Проверяет логин/пароль, обновляет last_login_at и выдает токен."""
    user = await get_user_by_username(session, username)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    await session.commit()

    token, expires_at = create_access_token(user)
    return TokenResponse(
        access_token=token,
        expires_at=expires_at,
        username=user.username,
        full_name=user.full_name,
    )


async def validate_token(session: AsyncSession, token: str) -> User | None:
    """Проверяет подпись, издателя, аудиторию и срок, затем заново загружает активного пользователя."""
    try:
        payload = jwt.decode(
            token, SECRET_KEY, algorithms=[ALGORITHM],
            audience=JWT_AUDIENCE, issuer=JWT_ISSUER,
        )
    except JWTError as e:
        logger.info(f"Невалидный токен: {e}")
        return None

    username = payload.get('sub')
    if username is None:
        return None
    user = await get_user_by_username(session, username)
    if user is None or not user.is_active:
        return None
    return user


# --- 4. Зависимость для получения текущего пользователя ---
# Любой активный пользователь с валидным токеном, например для /auth/me.
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    user = await validate_token(session, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return user


# Используется как зависимость на всех админских эндпоинтах.
# Валидный токен пользователя без is_admin дает 403.
async def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Недостаточно прав",
        )
    return current_user


# --- 5. Эндпоинты ---
@router.post('/login', response_model=TokenResponse)
async def login_for_token(data: LoginRequest, session: AsyncSession = Depends(get_session)):
    """Выдает токен администратора."""
    token = await login(session, data.username, data.password)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Неверный логин или пароль",
            headers={'WWW-Authenticate': 'Bearer'},
        )
    return token


@router.get('/me', summary='Get current user info', response_model=UserInfo)
async def read_users_me(current_user: User = Depends(get_current_user)):
    return UserInfo(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        full_name=current_user.full_name,
        is_admin=current_user.is_admin,
    )
