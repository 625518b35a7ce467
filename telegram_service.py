# Тонкая обертка над Telegram Bot API.
# Ни один метод не бросает исключения наружу: результат - bool или количество успешных отправок.
import asyncio
import html
import json
import logging
from typing import Iterable

import httpx
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from database import get_session
from models import Product, TelegramError, User
from storage import ImageStorage

logger = logging.getLogger(__name__)

# Ограничения Bot API
MEDIA_GROUP_LIMIT = 10
CAPTION_LIMIT = 1024

ERROR_TIMEOUT = 'Timeout'
ERROR_NETWORK = 'NetworkError'
ERROR_API = 'ApiError'
ERROR_FILE_NOT_FOUND = 'FileNotFound'


class TelegramSendError(Exception):
    def __init__(self, error_type: str, message: str, details: str | None = None):
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.details = details


def format_price(value) -> str:
    return f"{float(value):,.0f}".replace(',', ' ')


def format_product_caption(product: Product) -> str:
    lines = [f"<b>{html.escape(product.name)}</b>"]
    if product.brand:
        lines.append(f"Бренд: {html.escape(product.brand)}")
    if product.size:
        lines.append(f"Размер: {html.escape(product.size)}")
    if product.color:
        lines.append(f"Цвет: {html.escape(product.color)}")
    if product.condition:
        lines.append(f"Состояние: {html.escape(product.condition)}")
    if product.description:
        lines.append("")
        lines.append(html.escape(product.description))
    lines.append("")
    lines.append(f"Цена: {format_price(product.price)} ₽")
    return "\n".join(lines)


class TelegramService:
    def __init__(
        self,
        session: AsyncSession,
        token: str = config.TELEGRAM_BOT_TOKEN,
        channel_id: str = config.TELEGRAM_CHANNEL_ID,
        api_url: str = config.TELEGRAM_API_URL,
        storage: ImageStorage | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        photo_delay: float = config.TELEGRAM_PHOTO_DELAY_SECONDS,
    ):
        self.session = session
        self.token = token
        self.channel_id = channel_id
        self.api_url = api_url.rstrip('/')
        self.storage = storage or ImageStorage()
        # transport подменяется в тестах на httpx.MockTransport
        self.transport = transport
        self.photo_delay = photo_delay

    # --- 1. Низкоуровневый вызов API ---

    def _mask(self, text: str) -> str:
        # Токен бота никогда не должен попадать в логи
        return text.replace(self.token, '***') if self.token else text

    async def _call(self, method: str, **kwargs) -> dict:
        if not self.token:
            raise TelegramSendError(ERROR_API, "Токен бота не настроен")

        url = f"{self.api_url}/bot{self.token}/{method}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=30) as client:
                response = await client.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TelegramSendError(ERROR_TIMEOUT, f"Таймаут вызова {method}", self._mask(str(e)))
        except httpx.TransportError as e:
            raise TelegramSendError(ERROR_NETWORK, f"Сетевая ошибка при вызове {method}", self._mask(str(e)))
        except httpx.HTTPError as e:
            # Прочие ошибки httpx (декодирование ответа, редиректы)
            raise TelegramSendError(ERROR_API, f"Ошибка HTTP при вызове {method}", self._mask(str(e)))

        if response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if body.get('ok', True):
                return body
        raise TelegramSendError(
            ERROR_API,
            f"Bot API вернул {response.status_code} на {method}",
            self._mask(response.text),
        )

    async def _record_error(
        self,
        error: TelegramSendError,
        product_info: str | None = None,
        image_count: int | None = None,
    ) -> None:
        """Пишет неудачную отправку в канал в журнал TelegramError."""
        self.session.add(TelegramError(
            message=error.message,
            details=error.details,
            error_type=error.error_type,
            product_info=product_info,
            image_count=image_count,
            channel_id=self.channel_id or None,
        ))
        try:
            await self.session.commit()
        except Exception as e:
            logger.error(f"Не удалось сохранить ошибку Telegram: {e}")
            await self.session.rollback()

    async def _eligible_chat_ids(self) -> list[int]:
        # Для личных чатов chat_id совпадает с id пользователя Telegram
        result = await self.session.scalars(
            select(User.telegram_user_id)
            .where(User.telegram_user_id.is_not(None), User.is_active.is_(True))
        )
        return list(result)

    def _photo_file(self, relative: str) -> tuple[str, bytes, str]:
        path = self.storage.resolve(relative)
        if not path.exists():
            raise TelegramSendError(ERROR_FILE_NOT_FOUND, f"Файл не найден: {relative}")
        try:
            content = path.read_bytes()
        except OSError as e:
            raise TelegramSendError(ERROR_FILE_NOT_FOUND, f"Не удалось прочитать файл: {relative}", str(e))
        return path.name, content, 'image/jpeg'

    # --- 2. Личные сообщения и рассылки ---

    async def send_message(self, chat_id: int | str, text: str) -> bool:
        try:
            await self._call('sendMessage', json={'chat_id': chat_id, 'text': text, 'parse_mode': 'HTML'})
            logger.debug(f"Сообщение отправлено в чат {chat_id}")
            return True
        except TelegramSendError as e:
            logger.warning(f"Не удалось отправить сообщение в чат {chat_id}: {e.message} {e.details or ''}")
            return False

    async def send_broadcast_message(self, text: str) -> int:
        """Отправляет текст каждому активному пользователю с привязанным Telegram. Возвращает число успешных."""
        if not text or not text.strip():
            logger.warning("Попытка разослать пустое сообщение")
            return 0

        chat_ids = await self._eligible_chat_ids()
        if not chat_ids:
            logger.warning("Нет пользователей Telegram для рассылки")
            return 0

        success = 0
        for chat_id in chat_ids:
            if await self.send_message(chat_id, text):
                success += 1
        logger.info(f"Рассылка завершена. Успешно: {success}, ошибок: {len(chat_ids) - success}")
        return success

    async def send_photo(self, chat_id: int | str, photo_path: str, caption: str | None = None) -> bool:
        try:
            data = {'chat_id': str(chat_id)}
            if caption:
                data['caption'] = caption[:CAPTION_LIMIT]
                data['parse_mode'] = 'HTML'
            await self._call('sendPhoto', data=data, files={'photo': self._photo_file(photo_path)})
            return True
        except TelegramSendError as e:
            logger.warning(f"Не удалось отправить фото {photo_path} в чат {chat_id}: {e.message}")
            return False

    async def send_broadcast_with_photos(self, text: str, photo_paths: list[str]) -> int:
        """Каждому получателю: сначала текст, затем фото по одному с паузой."""
        chat_ids = await self._eligible_chat_ids()
        if not chat_ids:
            logger.warning("Нет пользователей Telegram для рассылки с фото")
            return 0

        success = 0
        for chat_id in chat_ids:
            if not await self.send_message(chat_id, text):
                continue
            success += 1
            for photo in photo_paths:
                await asyncio.sleep(self.photo_delay)
                await self.send_photo(chat_id, photo)
        logger.info(f"Рассылка с фото завершена. Успешно: {success} из {len(chat_ids)}")
        return success

    # --- 3. Канал ---

    async def send_message_to_channel(self, text: str, product_info: str | None = None) -> bool:
        try:
            await self._call('sendMessage', json={'chat_id': self.channel_id, 'text': text, 'parse_mode': 'HTML'})
            return True
        except TelegramSendError as e:
            logger.error(f"Не удалось отправить сообщение в канал: {e.message}")
            await self._record_error(e, product_info=product_info, image_count=0)
            return False

    async def _send_media_group(self, photos: list[tuple[str, bytes, str]], caption: str | None) -> None:
        for start in range(0, len(photos), MEDIA_GROUP_LIMIT):
            chunk = photos[start:start + MEDIA_GROUP_LIMIT]
            is_last_chunk = start + MEDIA_GROUP_LIMIT >= len(photos)
            media, files = [], {}
            for index, photo in enumerate(chunk):
                key = f"photo{index}"
                item = {'type': 'photo', 'media': f"attach://{key}"}
                # Подпись только у последнего элемента последней группы
                if caption and is_last_chunk and index == len(chunk) - 1:
                    item['caption'] = caption
                    item['parse_mode'] = 'HTML'
                media.append(item)
                files[key] = photo
            await self._call(
                'sendMediaGroup',
                data={'chat_id': self.channel_id, 'media': json.dumps(media)},
                files=files,
            )

    async def send_message_with_photos_to_channel(
        self,
        text: str,
        photo_paths: list[str],
        product_info: str | None = None,
    ) -> bool:
        """
        Пост в канал с фото: одно фото через sendPhoto, несколько через sendMediaGroup.
        Если с фото не получилось, отправляем хотя бы текст.
        """
        photos = []
        for relative in photo_paths:
            try:
                photos.append(self._photo_file(relative))
            except TelegramSendError as e:
                logger.warning(e.message)
                await self._record_error(e, product_info=product_info, image_count=len(photo_paths))

        if not photos:
            return await self.send_message_to_channel(text, product_info=product_info)

        # Длинный текст не влезает в подпись, тогда он уходит отдельным сообщением
        caption = text if len(text) <= CAPTION_LIMIT else None
        try:
            if len(photos) == 1:
                data = {'chat_id': self.channel_id}
                if caption:
                    data['caption'] = caption
                    data['parse_mode'] = 'HTML'
                await self._call('sendPhoto', data=data, files={'photo': photos[0]})
            else:
                await self._send_media_group(photos, caption)
        except TelegramSendError as e:
            logger.error(f"Не удалось отправить фото в канал ({len(photos)} шт.): {e.message}")
            await self._record_error(e, product_info=product_info, image_count=len(photos))
            return await self.send_message_to_channel(text, product_info=product_info)

        if caption is None:
            return await self.send_message_to_channel(text, product_info=product_info)
        return True

    async def send_products_to_channel(self, products: Iterable[Product]) -> tuple[int, int]:
        """Публикует каждый товар отдельным постом. Возвращает (успешно, с ошибкой)."""
        sent, failed = 0, 0
        for product in products:
            info = f"#{product.id} {product.name}"
            ok = await self.send_message_with_photos_to_channel(
                format_product_caption(product), list(product.images or []), product_info=info,
            )
            if ok:
                sent += 1
            else:
                failed += 1
        return sent, failed


def get_telegram_service(session: AsyncSession = Depends(get_session)) -> TelegramService:
    return TelegramService(session)
