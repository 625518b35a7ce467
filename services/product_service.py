# Каталог товаров и расчет доступного количества.
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import CART_RESERVATION_TTL_MINUTES
from errors import NotFoundError, ValidationError
from models import CartItem, Product
from schemas import ProductOut
from timeutils import utcnow

logger = logging.getLogger(__name__)


def reservation_cutoff(now: datetime | None = None) -> datetime:
    """Строки корзины новее этой отметки считаются активным резервом."""
    return (now or utcnow()) - timedelta(minutes=CART_RESERVATION_TTL_MINUTES)


def is_visible(product: Product, now: datetime | None = None) -> bool:
    return product.published_at is None or product.published_at <= (now or utcnow())


async def reserved_by_others(
    session: AsyncSession,
    product_ids: list[int],
    session_id: Optional[str],
    now: datetime | None = None,
) -> dict[int, int]:
    """Сумма свежих резервов чужих сессий по каждому товару, одним запросом."""
    if not product_ids:
        return {}
    query = (
        select(CartItem.product_id, func.coalesce(func.sum(CartItem.quantity), 0))
        .where(
            CartItem.product_id.in_(product_ids),
            CartItem.updated_at > reservation_cutoff(now),
        )
        .group_by(CartItem.product_id)
    )
    if session_id:
        query = query.where(CartItem.session_id != session_id)
    rows = await session.execute(query)
    return {product_id: int(total) for product_id, total in rows.all()}


def to_dto(product: Product, reserved: int = 0) -> ProductOut:
    return ProductOut(
        id=product.id,
        name=product.name,
        brand=product.brand,
        description=product.description,
        price=float(product.price),
        size=product.size,
        color=product.color,
        images=list(product.images or []),
        quantity_in_stock=product.quantity_in_stock,
        available_quantity=max(0, product.quantity_in_stock - reserved),
        gender=product.gender,
        condition=product.condition,
        published_at=product.published_at,
        created_at=product.created_at,
        updated_at=product.updated_at,
    )


async def _with_availability(
    session: AsyncSession,
    products: list[Product],
    session_id: Optional[str],
) -> list[ProductOut]:
    reserved = await reserved_by_others(session, [p.id for p in products], session_id)
    return [to_dto(p, reserved.get(p.id, 0)) for p in products]


# --- Публичный каталог ---

async def list_products(session: AsyncSession, session_id: Optional[str] = None) -> list[ProductOut]:
    now = utcnow()
    result = await session.scalars(
        select(Product)
        .where(or_(Product.published_at.is_(None), Product.published_at <= now))
        .order_by(Product.created_at.desc(), Product.id.desc())
    )
    return await _with_availability(session, list(result), session_id)


async def get_product(session: AsyncSession, product_id: int, session_id: Optional[str] = None) -> ProductOut:
    product = await session.get(Product, product_id)
    if product is None or not is_visible(product):
        raise NotFoundError(f"Товар {product_id} не найден")
    reserved = await reserved_by_others(session, [product.id], session_id)
    return to_dto(product, reserved.get(product.id, 0))


# --- Админка ---

async def list_for_admin(session: AsyncSession) -> list[ProductOut]:
    result = await session.scalars(select(Product).order_by(Product.created_at.desc(), Product.id.desc()))
    return await _with_availability(session, list(result), None)


async def list_unpublished(session: AsyncSession) -> list[ProductOut]:
    """Товары, которые ждут публикации (published_at в будущем)."""
    result = await session.scalars(
        select(Product)
        .where(Product.published_at > utcnow())
        .order_by(Product.published_at)
    )
    return await _with_availability(session, list(result), None)


def _check_fields(name: str, price: Decimal | float) -> None:
    if not name or not name.strip():
        raise ValidationError("Название товара обязательно")
    if price is None or Decimal(str(price)) < 0:
        raise ValidationError("Цена не может быть отрицательной")


async def create_product(session: AsyncSession, fields: dict, images: list[str]) -> ProductOut:
    """
    Создает товар. published_at=None означает 'виден сразу'.
    Остаток <= 0 при создании превращается в 1: на витрину попадает минимум одна вещь.
    """
    _check_fields(fields.get('name'), fields.get('price'))
    stock = fields.get('quantity_in_stock')
    now = utcnow()
    product = Product(
        name=fields['name'].strip(),
        brand=fields.get('brand') or '',
        description=fields.get('description'),
        price=Decimal(str(fields['price'])),
        size=fields.get('size') or '',
        color=fields.get('color') or '',
        images=list(images),
        quantity_in_stock=stock if stock and stock > 0 else 1,
        gender=fields.get('gender'),
        condition=fields.get('condition'),
        published_at=fields.get('published_at'),
        created_at=now,
        updated_at=now,
    )
    session.add(product)
    await session.commit()
    logger.info(f"Создан товар #{product.id} '{product.name}'")
    return to_dto(product)


async def update_product(session: AsyncSession, product_id: int, fields: dict, images: list[str]) -> ProductOut:
    """Обновляет товар. Остаток <= 0 оставляет прежнее значение."""
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Товар {product_id} не найден")
    _check_fields(fields.get('name'), fields.get('price'))

    product.name = fields['name'].strip()
    product.brand = fields.get('brand') or ''
    product.description = fields.get('description')
    product.price = Decimal(str(fields['price']))
    product.size = fields.get('size') or ''
    product.color = fields.get('color') or ''
    product.images = list(images)
    product.gender = fields.get('gender')
    product.condition = fields.get('condition')
    product.published_at = fields.get('published_at')
    stock = fields.get('quantity_in_stock')
    if stock and stock > 0:
        product.quantity_in_stock = stock
    product.updated_at = utcnow()

    await session.commit()
    reserved = await reserved_by_others(session, [product.id], None)
    return to_dto(product, reserved.get(product.id, 0))


async def delete_product(session: AsyncSession, product_id: int) -> bool:
    product = await session.get(Product, product_id)
    if product is None:
        return False
    # Резервы удаленного товара больше ничего не значат
    await session.execute(delete(CartItem).where(CartItem.product_id == product_id))
    await session.delete(product)
    await session.commit()
    logger.info(f"Удален товар #{product_id}")
    return True


async def publish_product(session: AsyncSession, product_id: int) -> ProductOut:
    """Публикует товар немедленно."""
    product = await session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Товар {product_id} не найден")
    now = utcnow()
    product.published_at = now
    product.updated_at = now
    await session.commit()
    reserved = await reserved_by_others(session, [product.id], None)
    return to_dto(product, reserved.get(product.id, 0))


async def list_ready_for_publication(
    session: AsyncSession,
    window_minutes: int,
    now: datetime | None = None,
) -> list[Product]:
    """Товары, чей published_at наступил в последние window_minutes минут."""
    now = now or utcnow()
    result = await session.scalars(
        select(Product)
        .where(
            Product.published_at.is_not(None),
            Product.published_at <= now,
            Product.published_at > now - timedelta(minutes=window_minutes),
        )
        .order_by(Product.published_at)
    )
    return list(result)
