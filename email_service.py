# Уведомление оператора о новом заказе по почте. Ошибки отправки никогда не ломают заказ.
import html
import logging
from email.message import EmailMessage

import aiosmtplib

import config
from models import Order
from timeutils import to_store_time

logger = logging.getLogger(__name__)


def render_order_html(order: Order) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(item.product_name)}</td>"
        f"<td>{item.quantity}</td>"
        f"<td>{item.product_price:.2f} ₽</td>"
        f"<td>{item.product_price * item.quantity:.2f} ₽</td></tr>"
        for item in order.items
    )
    created = to_store_time(order.created_at)

    def field(value):
        return html.escape(value) if value else '-'

    return f"""
<html>
<body>
  <h2>Новый заказ #{html.escape(order.order_number)}</h2>
  <p><b>Дата:</b> {created:%d.%m.%Y %H:%M}</p>
  <p><b>Клиент:</b> {field(order.customer_name)}</p>
  <p><b>Телефон:</b> {field(order.customer_phone)}</p>
  <p><b>Email:</b> {field(order.customer_email)}</p>
  <p><b>Адрес:</b> {field(order.customer_address)}</p>
  <p><b>Доставка:</b> {field(order.delivery_method)}</p>
  <p><b>Комментарий:</b> {field(order.comment)}</p>
  <table border="1" cellpadding="6" cellspacing="0">
    <tr><th>Товар</th><th>Кол-во</th><th>Цена</th><th>Сумма</th></tr>
    {rows}
  </table>
  <h3>Итого: {order.total_amount:.2f} ₽</h3>
</body>
</html>
"""


class EmailService:
    def __init__(
        self,
        host: str = config.SMTP_HOST,
        port: int = config.SMTP_PORT,
        username: str = config.SMTP_USERNAME,
        password: str = config.SMTP_PASSWORD,
        sender: str = config.EMAIL_FROM,
        recipient: str = config.EMAIL_TO,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.recipient = recipient

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password and self.recipient)

    def build_message(self, order: Order) -> EmailMessage:
        message = EmailMessage()
        message['Subject'] = f"Новый заказ #{order.order_number}"
        message['From'] = self.sender or self.username
        message['To'] = self.recipient
        message.set_content(f"Новый заказ #{order.order_number} на сумму {order.total_amount:.2f} ₽")
        message.add_alternative(render_order_html(order), subtype='html')
        return message

    async def send_order_notification(self, order: Order) -> bool:
        if not self.configured:
            logger.warning("SMTP не настроен, письмо о заказе не отправлено")
            return False

        try:
            await aiosmtplib.send(
                self.build_message(order),
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                start_tls=True,
            )
            logger.info(f"Письмо о заказе {order.order_number} отправлено на {self.recipient}")
            return True
        except Exception as e:
            # Письмо - побочный эффект, заказ уже сохранен
            logger.error(f"Не удалось отправить письмо о заказе {order.order_number}: {e}")
            return False


def get_email_service() -> EmailService:
    return EmailService()
