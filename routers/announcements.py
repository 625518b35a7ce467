from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin
from database import get_session
from schemas import AnnouncementOut, ProductOut
from services import announcement_service, product_service
from storage import ImageStorage, get_storage

router = APIRouter(
    prefix='/announcements',
    tags=['Announcements'],
    dependencies=[Depends(get_current_admin)]  # Все эндпоинты только для администратора
)


class AnnouncementCreate(BaseModel):
    message: str
    # Наивное время трактуется как время магазина
    scheduled_at: Optional[datetime] = None
    product_ids: List[int] = []


@router.get('', response_model=List[AnnouncementOut])
async def get_announcements(session: AsyncSession = Depends(get_session)):
    return await announcement_service.list_announcements(session)


@router.get('/unpublished-products', response_model=List[ProductOut])
async def get_unpublished_products(session: AsyncSession = Depends(get_session)):
    """Кандидаты для коллажа: товары, которые еще ждут публикации."""
    return await product_service.list_unpublished(session)


@router.post('', response_model=AnnouncementOut, status_code=status.HTTP_201_CREATED)
async def create_announcement(
    data: AnnouncementCreate,
    session: AsyncSession = Depends(get_session),
    storage: ImageStorage = Depends(get_storage),
):
    return await announcement_service.create_announcement(
        session, storage, data.message, data.scheduled_at, data.product_ids,
    )


@router.get('/{announcement_id}', response_model=AnnouncementOut)
async def get_announcement(announcement_id: int, session: AsyncSession = Depends(get_session)):
    return await announcement_service.get_announcement(session, announcement_id)


@router.delete('/{announcement_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_announcement(announcement_id: int, session: AsyncSession = Depends(get_session)):
    if not await announcement_service.delete_announcement(session, announcement_id):
        raise HTTPException(status_code=404, detail="Объявление не найдено")
