from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin
from database import get_session
from email_service import EmailService, get_email_service
from schemas import OrderCreate, OrderOut, OrderStatistics
from services import order_service

router = APIRouter(
    prefix='/orders',
    tags=['Orders'],
)

admin_only = [Depends(get_current_admin)]


# --- Модели Pydantic (относятся только к заказам) ---
class CancelRequest(BaseModel):
    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


# --- Эндпоинты для покупателей ---

@router.post('', response_model=OrderOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    data: OrderCreate,
    session: AsyncSession = Depends(get_session),
    email: EmailService = Depends(get_email_service),
):
    """Оформляет заказ. Письмо оператору уходит после сохранения и не влияет на результат."""
    return await order_service.create_order(session, data, email)


@router.get('/user', response_model=List[OrderOut])
async def get_user_orders(user_id: int, session: AsyncSession = Depends(get_session)):
    return await order_service.list_by_user(session, user_id)


@router.get('/statistics', response_model=OrderStatistics)
async def get_statistics(session: AsyncSession = Depends(get_session)):
    return await order_service.statistics(session)


@router.get('/{order_id}/public', response_model=OrderOut)
async def get_order_public(order_id: int, session: AsyncSession = Depends(get_session)):
    """Страница 'спасибо за заказ' на витрине."""
    return await order_service.get_order(session, order_id)


@router.post('/{order_id}/cancel')
async def cancel_order(
    order_id: int,
    data: Optional[CancelRequest] = None,
    session: AsyncSession = Depends(get_session),
):
    reason = data.reason if data else None
    if not await order_service.cancel_order(session, order_id, reason):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Заказ не найден или уже не может быть отменен",
        )
    return {'message': 'Заказ отменен'}


# --- Админка ---

@router.get('', response_model=List[OrderOut], dependencies=admin_only)
async def get_orders(session: AsyncSession = Depends(get_session)):
    return await order_service.list_all(session)


@router.get('/{order_id}', response_model=OrderOut, dependencies=admin_only)
async def get_order(order_id: int, session: AsyncSession = Depends(get_session)):
    return await order_service.get_order(session, order_id)


@router.put('/{order_id}/status', dependencies=admin_only)
async def update_order_status(
    order_id: int,
    data: StatusUpdateRequest,
    session: AsyncSession = Depends(get_session),
):
    if not await order_service.update_status(session, order_id, data.status):
        raise HTTPException(status_code=404, detail="Заказ не найден")
    return {'message': 'Статус обновлен', 'status': data.status}
