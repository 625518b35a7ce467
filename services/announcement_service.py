# Отложенные объявления: создание с коллажами и рассылка по расписанию.
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from collage import MAX_IMAGES, create_collage
from config import ANNOUNCEMENT_WINDOW_MINUTES
from errors import NotFoundError, ValidationError
from models import Announcement, Product
from storage import ImageStorage
from telegram_service import TelegramService
from timeutils import to_store_time, to_utc, utcnow

logger = logging.getLogger(__name__)


async def collect_first_images(session: AsyncSession, product_ids: list[int]) -> list[str]:
    """Первое фото каждого выбранного товара, в порядке выбора."""
    if not product_ids:
        return []
    result = await session.scalars(select(Product).where(Product.id.in_(product_ids)))
    by_id = {p.id: p for p in result}
    images = []
    for product_id in product_ids:
        product = by_id.get(product_id)
        if product is not None and product.images:
            images.append(product.images[0])
    return images


async def create_announcement(
    session: AsyncSession,
    storage: ImageStorage,
    message: str,
    scheduled_at: Optional[datetime],
    product_ids: Optional[list[int]] = None,
) -> Announcement:
    """
    Создает объявление. Наивное scheduled_at считается временем магазина.
    Фото выбранных товаров склеиваются в коллажи по 4 штуки.
    """
    if not message or not message.strip():
        raise ValidationError("Message is required")
    if scheduled_at is None:
        raise ValidationError("Scheduled time is required")

    scheduled_utc = to_utc(scheduled_at)
    now = utcnow()
    if scheduled_utc < now:
        raise ValidationError(
            f"Scheduled time must be in the future. Current store time: {to_store_time(now):%Y-%m-%d %H:%M:%S}, "
            f"scheduled: {to_store_time(scheduled_utc):%Y-%m-%d %H:%M:%S}"
        )

    product_ids = list(product_ids or [])
    images = await collect_first_images(session, product_ids)
    collages = []
    for start in range(0, len(images), MAX_IMAGES):
        collages.append(await create_collage(storage, images[start:start + MAX_IMAGES]))

    announcement = Announcement(
        message=message.strip(),
        scheduled_at=scheduled_utc,
        product_ids=product_ids,
        collage_images=collages,
        is_sent=False,
        sent_count=0,
        created_at=now,
    )
    session.add(announcement)
    await session.commit()
    logger.info(f"Создано объявление #{announcement.id} на {scheduled_utc.isoformat()}, коллажей: {len(collages)}")
    return announcement


async def list_announcements(session: AsyncSession) -> list[Announcement]:
    result = await session.scalars(
        select(Announcement).order_by(Announcement.created_at.desc(), Announcement.id.desc())
    )
    return list(result)


async def get_announcement(session: AsyncSession, announcement_id: int) -> Announcement:
    announcement = await session.get(Announcement, announcement_id)
    if announcement is None:
        raise NotFoundError(f"Объявление {announcement_id} не найдено")
    return announcement


async def delete_announcement(session: AsyncSession, announcement_id: int) -> bool:
    announcement = await session.get(Announcement, announcement_id)
    if announcement is None:
        return False
    await session.delete(announcement)
    await session.commit()
    return True


async def dispatch_due(
    session: AsyncSession,
    telegram: TelegramService,
    now: datetime | None = None,
    window_minutes: int = ANNOUNCEMENT_WINDOW_MINUTES,
) -> int:
    """
    Рассылает объявления, чье время наступило в последние window_minutes минут.
    Частичный успех все равно помечает объявление отправленным. Возвращает число разосланных объявлений.
    """
    now = now or utcnow()
    result = await session.scalars(
        select(Announcement)
        .where(
            Announcement.is_sent.is_(False),
            Announcement.scheduled_at <= now,
            Announcement.scheduled_at > now - timedelta(minutes=window_minutes),
        )
        .order_by(Announcement.scheduled_at)
    )
    due_ids = [a.id for a in result]
    if not due_ids:
        logger.debug("Нет объявлений к отправке")
        return 0

    logger.info(f"Найдено объявлений к отправке: {len(due_ids)}")
    dispatched = 0
    for announcement_id in due_ids:
        # После rollback объекты сессии просрочены, поэтому каждое объявление перечитываем
        announcement = await session.get(Announcement, announcement_id)
        if announcement is None or announcement.is_sent:
            continue
        try:
            if announcement.collage_images:
                sent_count = await telegram.send_broadcast_with_photos(
                    announcement.message, list(announcement.collage_images)
                )
            else:
                sent_count = await telegram.send_broadcast_message(announcement.message)

            announcement.is_sent = True
            announcement.sent_at = utcnow()
            announcement.sent_count = sent_count
            await session.commit()
            dispatched += 1
            logger.info(f"Объявление #{announcement.id} разослано {sent_count} пользователям")
        except Exception:
            # Одно сломанное объявление не мешает остальным
            logger.exception(f"Ошибка при отправке объявления #{announcement_id}")
            await session.rollback()
    return dispatched
