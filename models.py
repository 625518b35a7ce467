from datetime import UTC

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Numeric, Text, JSON,
    DateTime, BigInteger, UniqueConstraint, TypeDecorator,
)
from sqlalchemy.orm import DeclarativeBase, relationship

from timeutils import utcnow


# Это базовый класс для всех моделей
class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """
    Время всегда хранится и возвращается как aware-UTC.
    SQLite (в тестах) теряет tzinfo при чтении, поэтому проставляем его обратно.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# --- Пользователи (администраторы и "уведомительные" аккаунты из Telegram) ---
class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    telegram_user_id = Column(BigInteger, unique=True, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_login_at = Column(UTCDateTime, nullable=True)


# --- Каталог ---
class Product(Base):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    brand = Column(String(100), nullable=False, default='')
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    size = Column(String(50), nullable=False, default='')
    color = Column(String(50), nullable=False, default='')
    # Относительные пути вида /uploads/<file>
    images = Column(JSON, nullable=False, default=list)
    quantity_in_stock = Column(Integer, nullable=False, default=1)
    gender = Column(String(20), nullable=True)
    condition = Column(String(50), nullable=True)
    # NULL - виден сразу, время в будущем - скрыт до наступления
    published_at = Column(UTCDateTime, nullable=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)


# --- Корзина: мягкий резерв товара на время жизни строки ---
class CartItem(Base):
    __tablename__ = 'cart_items'
    __table_args__ = (
        UniqueConstraint('session_id', 'product_id', name='uq_cart_session_product'),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    # Токен оптимистичной блокировки
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    product = relationship('Product', lazy='joined')

    __mapper_args__ = {'version_id_col': version}


# --- Заказы ---
class Order(Base):
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    order_number = Column(String(50), unique=True, nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(50), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_address = Column(Text, nullable=True)
    delivery_method = Column(String(100), nullable=True)
    comment = Column(Text, nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(50), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    items = relationship(
        'OrderItem', back_populates='order', lazy='selectin',
        cascade='all, delete-orphan', order_by='OrderItem.id',
    )


class OrderItem(Base):
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    # Без внешнего ключа: история заказа переживает удаление товара
    product_id = Column(Integer, nullable=False)
    product_name = Column(String(255), nullable=False)
    product_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship('Order', back_populates='items')


# --- Отложенные объявления для рассылки в Telegram ---
class Announcement(Base):
    __tablename__ = 'announcements'

    id = Column(Integer, primary_key=True, index=True)
    message = Column(Text, nullable=False)
    scheduled_at = Column(UTCDateTime, nullable=False, index=True)
    product_ids = Column(JSON, nullable=False, default=list)
    collage_images = Column(JSON, nullable=False, default=list)
    is_sent = Column(Boolean, nullable=False, default=False)
    sent_at = Column(UTCDateTime, nullable=True)
    sent_count = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


class Brand(Base):
    __tablename__ = 'brands'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


# --- Журнал неудачных отправок в канал ---
class TelegramError(Base):
    __tablename__ = 'telegram_errors'

    id = Column(Integer, primary_key=True, index=True)
    error_date = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
    message = Column(Text, nullable=False)
    details = Column(Text, nullable=True)
    error_type = Column(String(50), nullable=False)
    product_info = Column(Text, nullable=True)
    image_count = Column(Integer, nullable=True)
    channel_id = Column(String(100), nullable=True)
