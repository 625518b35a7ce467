# Фоновые воркеры: периодические циклы опроса БД внутри процесса FastAPI.
# Каждый воркер на каждой итерации открывает свою сессию, делает работу и спит до следующего тика.
# Ошибка итерации пишется в лог, цикл продолжается. Если сервер перезапустился - работа просто продолжится со следующего тика.

# Поддержка асинхронного программирования для не блокирующих операций.
import asyncio
# Модуль Python для записи логов (отладка, ошибки, информация).
import logging
import os
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import config
from services import announcement_service, cart_service, product_service
from telegram_service import TelegramService
from timeutils import utcnow

# Получаем логгер. __name__ автоматически подставит "bg_tasks"
logger = logging.getLogger(__name__)

PUBLICATION_BROADCAST_TEXT = "Уважаемые дамы, каталог был обновлен. Успевайте забронировать товар!"

Job = Callable[[AsyncSession], Awaitable[object]]


# --- 1. Общий цикл опроса ---

class PollingWorker:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Job,
        session_factory: async_sessionmaker[AsyncSession],
        stop_event: asyncio.Event,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self.session_factory = session_factory
        self.stop_event = stop_event

    async def run_once(self) -> None:
        try:
            async with self.session_factory() as session:
                await self.job(session)
        except Exception:
            logger.exception(f"[{self.name}] Ошибка в итерации воркера")

    async def run(self) -> None:
        logger.info(f"[{self.name}] Воркер запущен, интервал {self.interval_seconds} с")
        # Сигнал остановки проверяется раз за итерацию, посреди работы воркер не прерывается
        while not self.stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info(f"[{self.name}] Воркер остановлен")


# --- 2. Дедупликация уведомлений о публикации ---

class ExpiringIdCache:
    """
    Ограниченный по времени набор id: запись живет ttl, потом вытесняется.
    Живет в памяти одного процесса, после рестарта уведомление может повториться.
    """

    def __init__(self, ttl: timedelta, max_size: int = 10_000):
        self.ttl = ttl
        self.max_size = max_size
        self._seen: dict[int, datetime] = {}

    def prune(self, now: datetime) -> None:
        expired = [key for key, added in self._seen.items() if now - added >= self.ttl]
        for key in expired:
            del self._seen[key]
        # Жесткий предел размера: выбрасываем самые старые
        overflow = len(self._seen) - self.max_size
        if overflow > 0:
            for key in sorted(self._seen, key=self._seen.get)[:overflow]:
                del self._seen[key]

    def add(self, key: int, now: datetime) -> None:
        self._seen[key] = now
        self.prune(now)

    def __contains__(self, key: int) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class PublicationNotifier:
    """Одна рассылка на пачку только что опубликованных товаров."""

    def __init__(
        self,
        window_minutes: int = config.PUBLICATION_WINDOW_MINUTES,
        dedup_ttl_minutes: int = config.PUBLICATION_DEDUP_TTL_MINUTES,
        telegram_factory: Callable[[AsyncSession], TelegramService] = TelegramService,
    ):
        self.window_minutes = window_minutes
        self.notified = ExpiringIdCache(timedelta(minutes=dedup_ttl_minutes))
        self.telegram_factory = telegram_factory

    async def __call__(self, session: AsyncSession, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        self.notified.prune(now)

        ready = await product_service.list_ready_for_publication(session, self.window_minutes, now)
        fresh = [p for p in ready if p.id not in self.notified]
        if not fresh:
            return 0

        logger.info(f"Опубликовано новых товаров: {len(fresh)}, отправляем рассылку")
        telegram = self.telegram_factory(session)
        sent = await telegram.send_broadcast_message(PUBLICATION_BROADCAST_TEXT)
        # Помечаем даже при неудачной отправке: повторять рассылку каждую минуту не нужно
        for product in fresh:
            self.notified.add(product.id, now)
        logger.info(f"Уведомление о публикации получили {sent} пользователей")
        return sent


# --- 3. Задачи воркеров ---

async def cleanup_cart(session: AsyncSession) -> int:
    return await cart_service.purge_expired(session)


async def dispatch_announcements(session: AsyncSession) -> int:
    return await announcement_service.dispatch_due(session, TelegramService(session))


# --- 4. Запуск и остановка из lifespan ---

def build_workers(session_factory, stop_event: asyncio.Event) -> list[PollingWorker]:
    return [
        PollingWorker('cart-cleanup', config.CART_CLEANUP_INTERVAL_SECONDS,
                      cleanup_cart, session_factory, stop_event),
        PollingWorker('announcements', config.ANNOUNCEMENT_CHECK_INTERVAL_SECONDS,
                      dispatch_announcements, session_factory, stop_event),
        PollingWorker('publication-notifier', config.PUBLICATION_CHECK_INTERVAL_SECONDS,
                      PublicationNotifier(), session_factory, stop_event),
    ]


def start_background_workers(app) -> None:
    if os.getenv('TESTING') == 'True':
        logger.info("TESTING mode: background workers are not started")
        app.state.worker_tasks = []
        return

    app.state.workers_stop = asyncio.Event()
    workers = build_workers(app.state.session_factory, app.state.workers_stop)
    app.state.worker_tasks = [asyncio.create_task(w.run(), name=w.name) for w in workers]


async def stop_background_workers(app) -> None:
    tasks = getattr(app.state, 'worker_tasks', [])
    if not tasks:
        return
    app.state.workers_stop.set()
    # Даем текущим итерациям закончиться
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Background workers stopped")
