import html
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin
from database import get_session
from errors import NotFoundError, ValidationError
from models import Product, User
from services import order_service
from telegram_service import TelegramService, get_telegram_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix='/telegram',
    tags=['Telegram'],
    dependencies=[Depends(get_current_admin)]
)


# --- Модели Pydantic ---
class MessageRequest(BaseModel):
    message: str


class SendProductsRequest(BaseModel):
    product_ids: List[int] = Field(min_length=1)


class SendStatusRequest(BaseModel):
    order_id: int


def _require_text(message: str) -> str:
    if not message or not message.strip():
        raise ValidationError("Message text is required")
    return message


@router.post('/send/{chat_id}')
async def send_message(chat_id: int, data: MessageRequest, telegram: TelegramService = Depends(get_telegram_service)):
    success = await telegram.send_message(chat_id, _require_text(data.message))
    return {'success': success, 'message': 'Message sent successfully' if success else 'Failed to send message'}


@router.post('/broadcast')
async def broadcast(data: MessageRequest, telegram: TelegramService = Depends(get_telegram_service)):
    sent_count = await telegram.send_broadcast_message(_require_text(data.message))
    return {'success': True, 'sent_count': sent_count, 'message': 'Broadcast message sent successfully'}


@router.post('/channel')
async def send_to_channel(data: MessageRequest, telegram: TelegramService = Depends(get_telegram_service)):
    success = await telegram.send_message_to_channel(_require_text(data.message))
    return {'success': success}


@router.post('/send-products')
async def send_products(
    data: SendProductsRequest,
    session: AsyncSession = Depends(get_session),
    telegram: TelegramService = Depends(get_telegram_service),
):
    """Публикует выбранные товары в канал, каждый отдельным постом."""
    result = await session.scalars(select(Product).where(Product.id.in_(data.product_ids)))
    by_id = {p.id: p for p in result}
    products = [by_id[i] for i in data.product_ids if i in by_id]
    if not products:
        raise NotFoundError("Товары не найдены")
    sent, failed = await telegram.send_products_to_channel(products)
    return {'success': failed == 0, 'sent_count': sent, 'failed_count': failed}


@router.post('/send-status')
async def send_order_status(
    data: SendStatusRequest,
    session: AsyncSession = Depends(get_session),
    telegram: TelegramService = Depends(get_telegram_service),
):
    """Сообщает покупателю текущий статус заказа через привязанный Telegram."""
    order = await order_service.get_order(session, data.order_id)
    if order.user_id is None:
        raise ValidationError("Заказ не привязан к пользователю")
    user = await session.get(User, order.user_id)
    if user is None or user.telegram_user_id is None:
        raise ValidationError("У пользователя нет привязанного Telegram")

    text = (
        f"Заказ <b>{html.escape(order.order_number)}</b>\n"
        f"Статус: {html.escape(order.status)}"
    )
    success = await telegram.send_message(user.telegram_user_id, text)
    return {'success': success}
