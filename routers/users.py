import logging
import secrets
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin, get_password_hash, get_user_by_username, verify_password
from database import get_session
from errors import ConflictError, NotFoundError, ValidationError
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/users', tags=['Users'])

admin_only = [Depends(get_current_admin)]

MIN_PASSWORD_LENGTH = 6


# --- Модели Pydantic ---
class UserCreate(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_admin: bool = True


class UserUpdate(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_active: Optional[bool] = None
    is_admin: Optional[bool] = None


class PasswordChange(BaseModel):
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class TelegramLinkRequest(BaseModel):
    telegram_user_id: int
    # Без логина создается аккаунт только для уведомлений.
    # С логином нужен пароль, иначе кто угодно привяжет себя к администратору
    username: Optional[str] = None
    password: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_active: bool
    is_admin: bool
    telegram_user_id: Optional[int] = None
    created_at: datetime
    last_login_at: Optional[datetime] = None


async def _get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"Пользователь {user_id} не найден")
    return user


# --- Админка ---

@router.post('', response_model=UserOut, status_code=status.HTTP_201_CREATED, dependencies=admin_only)
async def create_user(data: UserCreate, session: AsyncSession = Depends(get_session)):
    if await get_user_by_username(session, data.username):
        raise ConflictError("Username already exists")
    user = User(
        username=data.username,
        password_hash=get_password_hash(data.password),
        email=data.email,
        full_name=data.full_name,
        is_active=True,
        is_admin=data.is_admin,
    )
    session.add(user)
    await session.commit()
    logger.info(f"Создан пользователь '{user.username}'")
    return user


@router.get('', response_model=List[UserOut], dependencies=admin_only)
async def get_users(session: AsyncSession = Depends(get_session)):
    result = await session.scalars(select(User).order_by(User.id))
    return list(result)


@router.get('/{user_id}', response_model=UserOut, dependencies=admin_only)
async def get_user(user_id: int, session: AsyncSession = Depends(get_session)):
    return await _get_user(session, user_id)


@router.put('/{user_id}', response_model=UserOut, dependencies=admin_only)
async def update_user(user_id: int, data: UserUpdate, session: AsyncSession = Depends(get_session)):
    user = await _get_user(session, user_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    await session.commit()
    return user


@router.delete('/{user_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: int,
    current_user: User = Depends(get_current_admin),
    session: AsyncSession = Depends(get_session),
):
    if user_id == current_user.id:
        raise ValidationError("Нельзя удалить самого себя")
    user = await _get_user(session, user_id)
    await session.delete(user)
    await session.commit()


@router.put('/{user_id}/password', dependencies=admin_only)
async def change_password(user_id: int, data: PasswordChange, session: AsyncSession = Depends(get_session)):
    user = await _get_user(session, user_id)
    user.password_hash = get_password_hash(data.new_password)
    await session.commit()
    return {'message': 'Пароль изменен'}


# --- Эндпоинты для Telegram-бота ---

@router.post('/telegram-link', response_model=UserOut)
async def link_telegram(data: TelegramLinkRequest, session: AsyncSession = Depends(get_session)):
    """Привязывает Telegram id к пользователю, чтобы он получал рассылки."""
    owner = await session.scalar(select(User).where(User.telegram_user_id == data.telegram_user_id))

    if data.username:
        user = await get_user_by_username(session, data.username)
        if user is None or not verify_password(data.password or '', user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверный логин или пароль")
        if owner is not None and owner.id != user.id:
            # Telegram id переезжает к настоящему аккаунту
            owner.telegram_user_id = None
            await session.flush()
        user.telegram_user_id = data.telegram_user_id
        await session.commit()
        return user

    if owner is not None:
        return owner

    # Аккаунт только для уведомлений: войти по паролю в него нельзя
    user = User(
        username=f"tg_{data.telegram_user_id}",
        password_hash=f"!unusable!{secrets.token_hex(16)}",
        is_active=True,
        is_admin=False,
        telegram_user_id=data.telegram_user_id,
    )
    session.add(user)
    await session.commit()
    logger.info(f"Создан аккаунт для уведомлений {user.username}")
    return user


@router.get('/telegram/{telegram_user_id}/is-admin')
async def is_telegram_admin(telegram_user_id: int, session: AsyncSession = Depends(get_session)):
    user = await session.scalar(select(User).where(User.telegram_user_id == telegram_user_id))
    return {'is_admin': bool(user and user.is_active and user.is_admin)}
