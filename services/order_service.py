# Жизненный цикл заказа: оформление со списанием остатков, отмена с возвратом, статусы, статистика.
import enum
import logging
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from email_service import EmailService
from errors import NotFoundError, ValidationError
from models import Order, OrderItem, Product
from schemas import OrderCreate, OrderStatistics
from services.cart_service import clear_cart
from timeutils import utcnow

logger = logging.getLogger(__name__)


class OrderStatus(str, enum.Enum):
    ASSEMBLING = "В сборке"
    AWAITING_PAYMENT = "Ожидает оплату"
    IN_TRANSIT = "В пути"
    DELIVERED = "Доставлен"
    CANCELLED = "Отменен"


# Из этих статусов отмена невозможна
TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
PENDING_STATUSES = {OrderStatus.ASSEMBLING.value, OrderStatus.AWAITING_PAYMENT.value}


def generate_order_number() -> str:
    return f"ORD-{utcnow():%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


async def _take_stock(session: AsyncSession, product_id: int, quantity: int) -> bool:
    """Атомарно списывает остаток, только если его хватает. False - не хватило."""
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id, Product.quantity_in_stock >= quantity)
        .values(quantity_in_stock=Product.quantity_in_stock - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _return_stock(session: AsyncSession, product_id: int, quantity: int) -> bool:
    result = await session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity_in_stock=Product.quantity_in_stock + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def create_order(
    session: AsyncSession,
    dto: OrderCreate,
    email: Optional[EmailService] = None,
) -> Order:
    """
    Оформляет заказ целиком или не оформляет вовсе.
    Остатки проверяются по сырому количеству на складе, резервы чужих корзин не учитываются.
    """
    lines = []
    total = Decimal('0')
    try:
        for line in dto.items:
            if line.quantity <= 0:
                raise ValidationError(f"Некорректное количество для товара {line.product_id}")

            product = await session.get(Product, line.product_id)
            if product is None:
                raise ValidationError(f"Товар с ID {line.product_id} не найден")

            if not await _take_stock(session, product.id, line.quantity):
                raise ValidationError(
                    f"Недостаточно товара '{product.name}' на складе. "
                    f"Доступно: {product.quantity_in_stock}, запрошено: {line.quantity}"
                )

            # Снимок имени и цены на момент покупки
            lines.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_price=product.price,
                quantity=line.quantity,
            ))
            total += Decimal(product.price) * line.quantity

        now = utcnow()
        order = Order(
            user_id=dto.user_id,
            order_number=generate_order_number(),
            customer_name=dto.customer_name,
            customer_phone=dto.customer_phone,
            customer_email=dto.customer_email,
            customer_address=dto.customer_address,
            delivery_method=dto.delivery_method,
            comment=dto.comment,
            total_amount=total,
            status=OrderStatus.ASSEMBLING.value,
            created_at=now,
            updated_at=now,
            items=lines,
        )
        session.add(order)

        if dto.session_id:
            await clear_cart(session, dto.session_id, commit=False)

        await session.commit()
    except Exception:
        # Ни одного списания без заказа
        await session.rollback()
        raise

    logger.info(f"Создан заказ {order.order_number} на сумму {order.total_amount}")

    if email is not None:
        await email.send_order_notification(order)
    return order


async def get_order(session: AsyncSession, order_id: int) -> Order:
    order = await session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Заказ {order_id} не найден")
    return order


async def list_all(session: AsyncSession) -> list[Order]:
    result = await session.scalars(select(Order).order_by(Order.created_at.desc(), Order.id.desc()))
    return list(result)


async def list_by_user(session: AsyncSession, user_id: int) -> list[Order]:
    result = await session.scalars(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(result)


async def cancel_order(session: AsyncSession, order_id: int, reason: Optional[str] = None) -> bool:
    """Отменяет заказ и возвращает позиции на склад. False, если заказа нет или он уже завершен."""
    order = await session.get(Order, order_id)
    if order is None or order.status in TERMINAL_STATUSES:
        return False

    for item in order.items:
        if not await _return_stock(session, item.product_id, item.quantity):
            logger.warning(f"Товар {item.product_id} из заказа {order.order_number} удален, остаток не возвращен")

    now = utcnow()
    order.status = OrderStatus.CANCELLED.value
    order.cancelled_at = now
    order.cancellation_reason = reason
    order.updated_at = now
    await session.commit()
    logger.info(f"Заказ {order.order_number} отменен")
    return True


async def update_status(session: AsyncSession, order_id: int, status: str) -> bool:
    """
    Меняет статус заказа. Неизвестный статус и любое изменение завершенного заказа - ошибка валидации.
    Перевод в "Отменен" идет через cancel_order, чтобы вернуть остатки на склад.
    """
    valid = {s.value for s in OrderStatus}
    if status not in valid:
        raise ValidationError(f"Недопустимый статус. Допустимые значения: {', '.join(valid)}")

    order = await session.get(Order, order_id)
    if order is None:
        return False
    if order.status in TERMINAL_STATUSES:
        raise ValidationError(f"Заказ {order.order_number} уже завершен со статусом '{order.status}'")

    if status == OrderStatus.CANCELLED.value:
        return await cancel_order(session, order_id)

    order.status = status
    order.updated_at = utcnow()
    await session.commit()
    return True


async def statistics(session: AsyncSession) -> OrderStatistics:
    rows = (await session.execute(
        select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0))
        .group_by(Order.status)
    )).all()

    counts = {status: count for status, count, _ in rows}
    sums = {status: Decimal(str(amount)) for status, _, amount in rows}

    return OrderStatistics(
        total_orders=sum(counts.values()),
        pending_orders=counts.get(OrderStatus.ASSEMBLING.value, 0),
        awaiting_payment_orders=counts.get(OrderStatus.AWAITING_PAYMENT.value, 0),
        in_transit_orders=counts.get(OrderStatus.IN_TRANSIT.value, 0),
        delivered_orders=counts.get(OrderStatus.DELIVERED.value, 0),
        cancelled_orders=counts.get(OrderStatus.CANCELLED.value, 0),
        total_revenue=float(sum(
            (amount for status, amount in sums.items() if status != OrderStatus.CANCELLED.value),
            Decimal('0'),
        )),
        pending_revenue=float(sum(
            (amount for status, amount in sums.items() if status in PENDING_STATUSES),
            Decimal('0'),
        )),
    )
