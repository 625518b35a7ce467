# conftest.py: это глобальный файл конфигурации pytest.
# Любые фикстуры, объявленные здесь, доступны во всех тестах, без импортов.
import json
import os
import tempfile

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# --- 1. Настройка тестового окружения ---

# Приложение в режиме TESTING не подключается к Postgres и не запускает воркеры.
# Папку для картинок уводим во временную, чтобы не мусорить в репозитории.
os.environ['TESTING'] = 'True'
os.environ.setdefault('UPLOADS_DIR', tempfile.mkdtemp(prefix='bebochka-uploads-'))

# ВАЖНО: Импортируем `app` из main.py ПОСЛЕ установки переменных окружения.
from main import app  # noqa: E402
from auth import get_password_hash  # noqa: E402
from database import create_session_factory, get_session  # noqa: E402
from email_service import get_email_service  # noqa: E402
from models import Base, Product, User  # noqa: E402
from storage import ImageStorage, get_storage  # noqa: E402
from telegram_service import TelegramService, get_telegram_service  # noqa: E402
from timeutils import utcnow  # noqa: E402

ADMIN_PASSWORD = 'Admin123!'


# --- 2. Поддельный Telegram Bot API ---

class FakeTelegramApi:
    """Запоминает все вызовы Bot API и умеет отвечать ошибкой на выбранные методы или чаты."""

    def __init__(self):
        self.requests: list[tuple[str, httpx.Request]] = []
        self.fail_methods: set[str] = set()
        self.fail_chat_ids: set = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit('/', 1)[-1]
        self.requests.append((method, request))

        if method in self.fail_methods:
            return httpx.Response(400, json={'ok': False, 'description': 'Bad Request: forced failure'})
        if method == 'sendMessage' and json.loads(request.content)['chat_id'] in self.fail_chat_ids:
            return httpx.Response(403, json={'ok': False, 'description': 'Forbidden: bot was blocked by the user'})
        return httpx.Response(200, json={'ok': True, 'result': {}})

    def calls(self, method: str) -> list[httpx.Request]:
        return [r for m, r in self.requests if m == method]

    def sent_messages(self) -> list[dict]:
        return [json.loads(r.content) for r in self.calls('sendMessage')]


class RecordingEmail:
    """Вместо SMTP просто запоминаем заказы."""

    def __init__(self):
        self.orders = []

    async def send_order_notification(self, order) -> bool:
        self.orders.append(order.order_number)
        return True


# --- 3. База данных: чистая in-memory SQLite на каждый тест ---

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        'sqlite+aiosqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> ImageStorage:
    return ImageStorage(tmp_path / 'uploads')


@pytest.fixture
def telegram_api() -> FakeTelegramApi:
    return FakeTelegramApi()


@pytest.fixture
def make_telegram(telegram_api, storage):
    def factory(session: AsyncSession) -> TelegramService:
        return TelegramService(
            session,
            token='test-token',
            channel_id='@bebochka_test',
            storage=storage,
            transport=httpx.MockTransport(telegram_api.handler),
            photo_delay=0,
        )
    return factory


@pytest.fixture
def email_stub() -> RecordingEmail:
    return RecordingEmail()


# --- 4. Приложение с подмененными зависимостями ---

@pytest.fixture
def override_dependencies(session_factory, make_telegram, email_stub, storage):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    def override_get_telegram(session: AsyncSession = Depends(get_session)):
        return make_telegram(session)

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_telegram_service] = override_get_telegram
    app.dependency_overrides[get_email_service] = lambda: email_stub
    app.dependency_overrides[get_storage] = lambda: storage
    yield
    app.dependency_overrides = {}


@pytest_asyncio.fixture
async def ac(override_dependencies):
    """
    Асинхронный клиент. Работает в том же event loop, что и aiosqlite,
    поэтому тест может и ходить в API, и напрямую смотреть в БД.
    """
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url='http://test') as client:
        yield client


# --- 5. Помощники для данных ---

@pytest_asyncio.fixture
async def admin_user(session_factory) -> User:
    async with session_factory() as session:
        user = User(
            username='admin',
            password_hash=get_password_hash(ADMIN_PASSWORD),
            full_name='Администратор',
            is_active=True,
            is_admin=True,
        )
        session.add(user)
        await session.commit()
        return user


@pytest_asyncio.fixture
async def auth_headers(ac: AsyncClient, admin_user: User) -> dict:
    """Логинимся администратором и возвращаем готовый заголовок."""
    response = await ac.post('/auth/login', json={'username': 'admin', 'password': ADMIN_PASSWORD})
    assert response.status_code == 200
    return {'Authorization': f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def make_product(session_factory):
    """Создает товар напрямую в БД. Параметры по умолчанию можно переопределить."""
    async def factory(**fields) -> Product:
        now = utcnow()
        values = {
            'name': 'Платье в горошек',
            'brand': 'Zara Kids',
            'price': 1500,
            'size': '110',
            'color': 'Розовый',
            'images': [],
            'quantity_in_stock': 5,
            'created_at': now,
            'updated_at': now,
        }
        values.update(fields)
        async with session_factory() as session:
            product = Product(**values)
            session.add(product)
            await session.commit()
            return product
    return factory


@pytest.fixture
def make_telegram_user(session_factory):
    async def factory(telegram_user_id: int, is_active: bool = True, username: str | None = None) -> User:
        async with session_factory() as session:
            user = User(
                username=username or f"tg_{telegram_user_id}",
                password_hash='!unusable!',
                is_active=is_active,
                is_admin=False,
                telegram_user_id=telegram_user_id,
            )
            session.add(user)
            await session.commit()
            return user
    return factory


@pytest.fixture
def make_image(storage):
    """Кладет настоящую картинку в хранилище и возвращает путь /uploads/<file>."""
    from PIL import Image

    def factory(size=(400, 300), color=(200, 100, 100)) -> str:
        name = storage.new_name('.jpg')
        Image.new('RGB', size, color).save(storage.root / name, 'JPEG')
        return storage.url_for(name)
    return factory
