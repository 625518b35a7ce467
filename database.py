# Управление соединением с базой данных.
import asyncio
import logging
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Импортируем готовые настройки из нашего центрального конфига
from config import DATABASE_URL, DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_PASSWORD
from models import Base, User

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
WAIT_SECONDS = 5


def create_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: объекты остаются читаемыми после commit (нужно для DTO)
    return async_sessionmaker(engine, expire_on_commit=False)


# Эта функция будет вызываться один раз при старте приложения
async def connect_to_db(app):
    """Создает движок и фабрику сессий, хранит их в app.state."""
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            logger.info(f"Попытка подключения к БД {attempt}/{MAX_RETRIES}")
            engine = create_async_engine(DATABASE_URL, pool_size=20, pool_pre_ping=True)

            # СОЗДАЕМ ТАБЛИЦЫ (Если их нет)
            await create_tables(engine)

            app.state.engine = engine
            app.state.session_factory = create_session_factory(engine)
            await seed_default_admin(app.state.session_factory)
            logger.info('✅ Database engine created successfully')
            return

        except Exception as e:
            logger.error(f"❌ Connection failed: {e}")
            if attempt < MAX_RETRIES:
                logger.info(f"Waiting {WAIT_SECONDS} seconds before retrying...")
                await asyncio.sleep(WAIT_SECONDS)
            else:
                logger.critical("Could not connect to DB after multiple attempts")
                raise


async def create_tables(engine):
    """Создает необходимые таблицы в БД при старте."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✅  Tables are ready")


async def seed_default_admin(session_factory):
    """Создает администратора по умолчанию, если его еще нет."""
    # Импорт здесь: auth сам зависит от database
    from auth import get_password_hash

    async with session_factory() as session:
        existing = await session.scalar(select(User).where(User.username == DEFAULT_ADMIN_USERNAME))
        if existing:
            return
        session.add(User(
            username=DEFAULT_ADMIN_USERNAME,
            password_hash=get_password_hash(DEFAULT_ADMIN_PASSWORD),
            full_name='Администратор',
            is_active=True,
            is_admin=True,
        ))
        await session.commit()
        logger.info(f"Создан администратор по умолчанию '{DEFAULT_ADMIN_USERNAME}'")


# Эта функция будет вызываться 1 раз при остановке приложения
async def close_db_connection(app):
    logger.info('Closing database engine...')
    await app.state.engine.dispose()
    logger.info('Database engine closed')


# Это зависимость (Dependency)
# Любой эндпоинт сможет запросить сессию, она закроется после ответа
async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.session_factory() as session:
        yield session
