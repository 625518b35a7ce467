import os
import sys
from dotenv import load_dotenv


# --- "Умная" загрузка конфигурации ---
# Если Python запущен через Pytest, берем переменные из .env.test
if "pytest" in sys.modules:
    load_dotenv(".env.test")
else:
    # В обычном режиме (через uvicorn) загружаем из .env
    load_dotenv()

# --- Собираем все настройки в одном месте ---

# Настройки JWT
SECRET_KEY = os.getenv('SECRET_KEY', 'a_very_secret_key_for_local_development')
ALGORITHM = os.getenv('ALGORITHM', 'HS256')
# Токен администратора живет 7 дней, refresh-токенов нет
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24 * 7))
JWT_ISSUER = os.getenv('JWT_ISSUER', 'bebochka-api')
JWT_AUDIENCE = os.getenv('JWT_AUDIENCE', 'bebochka-admin')

# --- Настройки подключения к БД ---
DB_HOST = os.getenv('DB_HOST', 'localhost')
DB_PORT = os.getenv('DB_PORT', '5432')
DB_NAME = os.getenv('DB_NAME', 'bebochka')
DB_USER = os.getenv('DB_USER', 'postgres')
DB_PASSWORD = os.getenv('DB_PASSWORD', 'postgres')

# --- Сборка URL для SQLAlchemy (драйвер asyncpg) ---
# Готовый DATABASE_URL из окружения имеет приоритет
DATABASE_URL = os.getenv(
    'DATABASE_URL',
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# --- Файлы ---
# Плоская папка для загруженных фото и коллажей, отдается по /uploads
UPLOADS_DIR = os.getenv('UPLOADS_DIR', 'uploads')

# --- Telegram ---
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
TELEGRAM_CHANNEL_ID = os.getenv('TELEGRAM_CHANNEL_ID', '')
TELEGRAM_API_URL = os.getenv('TELEGRAM_API_URL', 'https://api.telegram.org')
# Пауза между фото в рассылке, чтобы не упереться в лимиты бота
TELEGRAM_PHOTO_DELAY_SECONDS = float(os.getenv('TELEGRAM_PHOTO_DELAY_SECONDS', 0.5))

# --- Почта ---
SMTP_HOST = os.getenv('SMTP_HOST', 'smtp.gmail.com')
SMTP_PORT = int(os.getenv('SMTP_PORT', 587))
SMTP_USERNAME = os.getenv('SMTP_USERNAME', '')
SMTP_PASSWORD = os.getenv('SMTP_PASSWORD', '')
EMAIL_FROM = os.getenv('EMAIL_FROM', SMTP_USERNAME)
EMAIL_TO = os.getenv('EMAIL_TO', '')

# --- Время ---
# Клиенты присылают "наивное" время магазина, внутри все хранится в UTC
STORE_TIMEZONE = os.getenv('STORE_TIMEZONE', 'Europe/Moscow')

# --- Корзина и фоновые воркеры ---
CART_RESERVATION_TTL_MINUTES = int(os.getenv('CART_RESERVATION_TTL_MINUTES', 20))
CART_CLEANUP_INTERVAL_SECONDS = int(os.getenv('CART_CLEANUP_INTERVAL_SECONDS', 300))
ANNOUNCEMENT_CHECK_INTERVAL_SECONDS = int(os.getenv('ANNOUNCEMENT_CHECK_INTERVAL_SECONDS', 60))
ANNOUNCEMENT_WINDOW_MINUTES = int(os.getenv('ANNOUNCEMENT_WINDOW_MINUTES', 5))
PUBLICATION_CHECK_INTERVAL_SECONDS = int(os.getenv('PUBLICATION_CHECK_INTERVAL_SECONDS', 60))
PUBLICATION_WINDOW_MINUTES = int(os.getenv('PUBLICATION_WINDOW_MINUTES', 5))
PUBLICATION_DEDUP_TTL_MINUTES = int(os.getenv('PUBLICATION_DEDUP_TTL_MINUTES', 60))

# --- Администратор по умолчанию (создается при первом старте) ---
DEFAULT_ADMIN_USERNAME = os.getenv('DEFAULT_ADMIN_USERNAME', 'admin')
DEFAULT_ADMIN_PASSWORD = os.getenv('DEFAULT_ADMIN_PASSWORD', 'Admin123!')
