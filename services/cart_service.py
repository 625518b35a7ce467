# Корзина как мягкий резерв: строка считается резервом, пока она "свежая" (TTL с момента изменения).
# Устаревшие строки удаляет фоновая очистка, а все чтения отбрасывают их сами.
import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from errors import ConflictError, NotFoundError, ValidationError
from models import CartItem, Product
from schemas import CartItemOut
from services.product_service import is_visible, reservation_cutoff, reserved_by_others
from timeutils import utcnow

logger = logging.getLogger(__name__)


def is_fresh(item: CartItem, now: datetime | None = None) -> bool:
    return item.updated_at > reservation_cutoff(now)


def to_view(item: CartItem) -> CartItemOut:
    product = item.product
    return CartItemOut(
        id=item.id,
        session_id=item.session_id,
        product_id=item.product_id,
        product_name=product.name,
        product_brand=product.brand,
        product_size=product.size,
        product_color=product.color,
        product_price=float(product.price),
        product_images=list(product.images or []),
        quantity=item.quantity,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _require_session(session_id: str) -> None:
    if not session_id or not session_id.strip():
        raise ValidationError("SessionId is required")


async def _available_for(session: AsyncSession, product: Product, session_id: str) -> int:
    reserved = await reserved_by_others(session, [product.id], session_id)
    return product.quantity_in_stock - reserved.get(product.id, 0)


async def _commit(session: AsyncSession) -> None:
    """Коммит с переводом гонок в ConflictError: чужая версия строки или дубль (session, product)."""
    try:
        await session.commit()
    except (StaleDataError, IntegrityError) as e:
        await session.rollback()
        logger.info(f"Конфликт при изменении корзины: {e}")
        raise ConflictError("Корзина была изменена параллельно, повторите попытку")


async def add_to_cart(session: AsyncSession, session_id: str, product_id: int, quantity: int) -> CartItemOut:
    _require_session(session_id)
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")

    product = await session.get(Product, product_id)
    if product is None or not is_visible(product):
        raise NotFoundError("Product not found")

    # 1. Сколько осталось с учетом свежих резервов других сессий
    available = await _available_for(session, product, session_id)
    if available <= 0:
        raise ValidationError("Product is out of stock")

    # 2. Зажимаем запрос в доступное количество
    quantity_to_add = min(quantity, available)
    if quantity_to_add <= 0:
        raise ValidationError("Cannot add more items than available")

    now = utcnow()
    item = await session.scalar(
        select(CartItem).where(CartItem.session_id == session_id, CartItem.product_id == product_id)
    )

    if item is not None and is_fresh(item, now):
        new_total = item.quantity + quantity_to_add
        if new_total > available:
            raise ValidationError(
                f"Only {available} items available. You already have {item.quantity} in cart."
            )
        item.quantity = new_total
        item.updated_at = now
    elif item is not None:
        # Своя устаревшая строка: резерв уже истек, начинаем заново
        item.quantity = quantity_to_add
        item.created_at = now
        item.updated_at = now
    else:
        item = CartItem(
            session_id=session_id,
            product_id=product_id,
            quantity=quantity_to_add,
            created_at=now,
            updated_at=now,
            product=product,
        )
        session.add(item)

    await _commit(session)
    return to_view(item)


async def update_quantity(session: AsyncSession, cart_item_id: int, quantity: int) -> CartItemOut:
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")

    item = await session.get(CartItem, cart_item_id)
    now = utcnow()
    if item is None or not is_fresh(item, now):
        raise NotFoundError("Cart item not found")

    available = await _available_for(session, item.product, item.session_id)
    if quantity > available:
        raise ValidationError(f"Only {max(available, 0)} items available")

    item.quantity = quantity
    item.updated_at = now
    await _commit(session)
    return to_view(item)


async def remove_item(session: AsyncSession, cart_item_id: int) -> bool:
    item = await session.get(CartItem, cart_item_id)
    if item is None:
        return False
    await session.delete(item)
    await _commit(session)
    return True


async def clear_cart(session: AsyncSession, session_id: str, commit: bool = True) -> int:
    _require_session(session_id)
    result = await session.execute(delete(CartItem).where(CartItem.session_id == session_id))
    if commit:
        await session.commit()
    return result.rowcount or 0


async def list_cart(session: AsyncSession, session_id: str) -> list[CartItemOut]:
    _require_session(session_id)
    result = await session.scalars(
        select(CartItem)
        .where(CartItem.session_id == session_id, CartItem.updated_at > reservation_cutoff())
        .order_by(CartItem.created_at, CartItem.id)
    )
    return [to_view(item) for item in result.unique()]


async def purge_expired(session: AsyncSession, now: datetime | None = None) -> int:
    """Физически удаляет устаревшие резервы. Вызывается фоновой очисткой."""
    result = await session.execute(
        delete(CartItem).where(CartItem.updated_at <= reservation_cutoff(now))
    )
    await session.commit()
    removed = result.rowcount or 0
    if removed:
        logger.info(f"Удалено устаревших резервов корзины: {removed}")
    return removed
