from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

# Импортируем зависимости из наших центральных модулей
from auth import get_current_admin
from database import get_session
from schemas import ProductOut
from services import product_service
from storage import ImageStorage, get_storage
from timeutils import parse_client_datetime

# Каталог открыт всем, изменения только для администратора
router = APIRouter(
    prefix='/products',
    tags=['Products'],
)

admin_only = [Depends(get_current_admin)]


async def _product_fields(
    name: str = Form(...),
    price: float = Form(...),
    brand: str = Form(''),
    description: Optional[str] = Form(None),
    size: str = Form(''),
    color: str = Form(''),
    quantity_in_stock: int = Form(1),
    gender: Optional[str] = Form(None),
    condition: Optional[str] = Form(None),
    published_at: Optional[str] = Form(None),
) -> dict:
    # Дата публикации приходит как время магазина, переводим в UTC здесь
    return {
        'name': name,
        'price': price,
        'brand': brand,
        'description': description,
        'size': size,
        'color': color,
        'quantity_in_stock': quantity_in_stock,
        'gender': gender,
        'condition': condition,
        'published_at': parse_client_datetime(published_at),
    }


async def _save_images(storage: ImageStorage, images: List[UploadFile]) -> list[str]:
    return [await storage.save_upload(image) for image in images if image.filename]


# --- Публичные эндпоинты ---

@router.get('', response_model=List[ProductOut])
async def get_products(session_id: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    """Видимые товары, новые первыми, с учетом резервов чужих корзин."""
    return await product_service.list_products(session, session_id)


# --- Админка (объявлены до /{product_id}) ---

@router.get('/admin/all', response_model=List[ProductOut], dependencies=admin_only)
async def get_all_products(session: AsyncSession = Depends(get_session)):
    return await product_service.list_for_admin(session)


@router.get('/admin/unpublished', response_model=List[ProductOut], dependencies=admin_only)
async def get_unpublished_products(session: AsyncSession = Depends(get_session)):
    return await product_service.list_unpublished(session)


@router.get('/{product_id}', response_model=ProductOut)
async def get_product(product_id: int, session_id: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    return await product_service.get_product(session, product_id, session_id)


@router.post('', response_model=ProductOut, status_code=status.HTTP_201_CREATED, dependencies=admin_only)
async def create_product(
    fields: dict = Depends(_product_fields),
    images: List[UploadFile] = File(default=[]),
    session: AsyncSession = Depends(get_session),
    storage: ImageStorage = Depends(get_storage),
):
    """Создает товар из multipart-формы с фотографиями."""
    paths = await _save_images(storage, images)
    return await product_service.create_product(session, fields, paths)


@router.put('/{product_id}', response_model=ProductOut, dependencies=admin_only)
async def update_product(
    product_id: int,
    fields: dict = Depends(_product_fields),
    images: List[UploadFile] = File(default=[]),
    existing_images: List[str] = Form(default=[]),
    session: AsyncSession = Depends(get_session),
    storage: ImageStorage = Depends(get_storage),
):
    """Обновляет товар. existing_images - фото, которые нужно оставить, новые файлы добавляются в конец."""
    paths = list(existing_images) + await _save_images(storage, images)
    return await product_service.update_product(session, product_id, fields, paths)


@router.delete('/{product_id}', status_code=status.HTTP_204_NO_CONTENT, dependencies=admin_only)
async def delete_product(product_id: int, session: AsyncSession = Depends(get_session)):
    if not await product_service.delete_product(session, product_id):
        raise HTTPException(status_code=404, detail="Продукт не найден")


@router.post('/{product_id}/publish', response_model=ProductOut, dependencies=admin_only)
async def publish_product(product_id: int, session: AsyncSession = Depends(get_session)):
    """Публикует товар прямо сейчас."""
    return await product_service.publish_product(session, product_id)
