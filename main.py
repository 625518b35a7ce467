import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles


# --- 1. Импортируем наши модули ---
# ВАЖНО: config должен импортироваться до модулей, которые его используют.
# Он сам загрузит нужный .env или .env.test файл.
import config
# Импортируем функции для управления жизненным циклом БД
from database import connect_to_db, close_db_connection
from errors import register_exception_handlers
from bg_tasks import start_background_workers, stop_background_workers
# Импортируем готовые "удлинители" (роутеры) из каждого модуля
from auth import router as auth_router
from routers.products import router as products_router
from routers.cart import router as cart_router
from routers.orders import router as orders_router
from routers.users import router as users_router
from routers.announcements import router as announcements_router
from routers.brands import router as brands_router
from routers.colors import router as colors_router
from routers.telegram import router as telegram_router
from routers.telegram_errors import router as telegram_errors_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)
logger = logging.getLogger(__name__)


# --- 2. Управление жизненным циклом приложения ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Старт: подключение к БД, создание таблиц, администратор по умолчанию, фоновые воркеры.
    Остановка: сначала воркеры, потом соединения с БД.
    В режиме TESTING ничего из этого не делается, тесты сами подставляют БД.
    """
    logger.info("Lifespan starting")
    testing = os.getenv("TESTING") == "True"

    if not testing:
        await connect_to_db(app)
        start_background_workers(app)
    else:
        logger.info("TESTING mode: skipping DB connect")

    # --- Основная работа ---
    yield

    logger.info("Lifespan shutting down")
    if not testing:
        await stop_background_workers(app)
        await close_db_connection(app)


# --- 3. Создаем и настраиваем приложение ---
app = FastAPI(
    title='Bebochka API',
    description="Магазин детской одежды: каталог, корзина с резервами, заказы, рассылки в Telegram.",
    version='1.0.0',
    lifespan=lifespan
)

# Сервисы бросают ServiceError, здесь вид ошибки превращается в HTTP-статус
register_exception_handlers(app)

# Загруженные фото и коллажи
os.makedirs(config.UPLOADS_DIR, exist_ok=True)
app.mount('/uploads', StaticFiles(directory=config.UPLOADS_DIR), name='uploads')


# --- 4. Подключаем роутеры ---
app.include_router(auth_router)
app.include_router(products_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(users_router)
app.include_router(announcements_router)
app.include_router(brands_router)
app.include_router(colors_router)
app.include_router(telegram_router)
app.include_router(telegram_errors_router)


# --- 5. Корневой эндпоинт ---
# Простой эндпоинт, чтобы можно было легко проверить, что сервер запущен.
@app.get('/', tags=['Root'])
def read_root():
    """Простой эндпоинт для проверки статуса API."""
    return {'status': 'API is running'}
