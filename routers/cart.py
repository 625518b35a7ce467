from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_session
from schemas import CartAddRequest, CartItemOut, CartUpdateRequest
from services import cart_service

# Корзина привязана к непрозрачному session_id клиента, авторизация не нужна
router = APIRouter(
    prefix='/cart',
    tags=['Cart'],
)


@router.get('', response_model=List[CartItemOut])
async def get_cart(session_id: str = Query(...), session: AsyncSession = Depends(get_session)):
    """Только свежие строки корзины этой сессии."""
    return await cart_service.list_cart(session, session_id)


@router.post('', response_model=CartItemOut, status_code=status.HTTP_201_CREATED)
async def add_to_cart(data: CartAddRequest, session: AsyncSession = Depends(get_session)):
    return await cart_service.add_to_cart(session, data.session_id, data.product_id, data.quantity)


@router.put('/{item_id}', response_model=CartItemOut)
async def update_cart_item(item_id: int, data: CartUpdateRequest, session: AsyncSession = Depends(get_session)):
    return await cart_service.update_quantity(session, item_id, data.quantity)


@router.delete('/{item_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_cart(item_id: int, session: AsyncSession = Depends(get_session)):
    if not await cart_service.remove_item(session, item_id):
        raise HTTPException(status_code=404, detail="Cart item not found")


@router.delete('', status_code=status.HTTP_204_NO_CONTENT)
async def clear_cart(session_id: str = Query(...), session: AsyncSession = Depends(get_session)):
    await cart_service.clear_cart(session, session_id)
