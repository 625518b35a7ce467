import json
from datetime import datetime, UTC

import httpx
import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy import select

from models import Order, TelegramError
from telegram_service import (
    ERROR_API, ERROR_FILE_NOT_FOUND, ERROR_NETWORK, TelegramService, format_price, format_product_caption,
)
from timeutils import utcnow


async def logged_errors(session_factory) -> list[TelegramError]:
    async with session_factory() as session:
        return list(await session.scalars(select(TelegramError).order_by(TelegramError.id)))


# --- Личные сообщения и рассылки ---

@pytest.mark.asyncio
async def test_send_message_payload(db_session, make_telegram, telegram_api):
    telegram = make_telegram(db_session)
    assert await telegram.send_message(42, '<b>Привет</b>') is True

    request = telegram_api.calls('sendMessage')[0]
    assert request.url.path == '/bottest-token/sendMessage'
    assert json.loads(request.content) == {'chat_id': 42, 'text': '<b>Привет</b>', 'parse_mode': 'HTML'}


@pytest.mark.asyncio
async def test_send_message_failure_returns_false(db_session, make_telegram, telegram_api):
    telegram_api.fail_methods.add('sendMessage')
    assert await make_telegram(db_session).send_message(42, 'text') is False


@pytest.mark.asyncio
async def test_network_error_is_not_raised(db_session, storage):
    def handler(request):
        raise httpx.ConnectError('connection refused', request=request)

    telegram = TelegramService(db_session, token='test-token', channel_id='@chan',
                               storage=storage, transport=httpx.MockTransport(handler))
    assert await telegram.send_message(1, 'text') is False

    assert await telegram.send_message_to_channel('text') is False
    errors = list(await db_session.scalars(select(TelegramError)))
    assert errors[0].error_type == ERROR_NETWORK


@pytest.mark.asyncio
async def test_other_http_errors_are_not_raised(db_session, storage, make_telegram_user):
    def handler(request):
        raise httpx.DecodingError('bad gzip', request=request)

    await make_telegram_user(1001)
    telegram = TelegramService(db_session, token='test-token', channel_id='@chan',
                               storage=storage, transport=httpx.MockTransport(handler))
    assert await telegram.send_message(1, 'text') is False
    assert await telegram.send_broadcast_message('text') == 0

    assert await telegram.send_message_to_channel('text') is False
    errors = list(await db_session.scalars(select(TelegramError)))
    assert errors[0].error_type == ERROR_API


@pytest.mark.asyncio
async def test_unreadable_photo_is_logged_not_raised(db_session, session_factory, make_telegram, telegram_api, storage):
    # Путь существует, но прочитать его как файл нельзя
    (storage.root / 'broken.jpg').mkdir()

    ok = await make_telegram(db_session).send_message_with_photos_to_channel('Пост', ['/uploads/broken.jpg'])
    assert ok is True
    assert [m for m, _ in telegram_api.requests] == ['sendMessage']

    errors = await logged_errors(session_factory)
    assert errors[0].error_type == ERROR_FILE_NOT_FOUND


@pytest.mark.asyncio
async def test_without_token_nothing_is_sent(db_session, storage, telegram_api):
    telegram = TelegramService(db_session, token='', channel_id='@chan', storage=storage,
                               transport=httpx.MockTransport(telegram_api.handler))
    assert await telegram.send_message(1, 'text') is False
    assert telegram_api.requests == []


@pytest.mark.asyncio
async def test_broadcast_counts_only_successful(db_session, make_telegram, make_telegram_user, telegram_api):
    await make_telegram_user(1001)
    await make_telegram_user(1002)
    await make_telegram_user(1003, is_active=False)
    telegram_api.fail_chat_ids.add(1002)

    sent = await make_telegram(db_session).send_broadcast_message('Скидки!')
    assert sent == 1
    # Неактивному пользователю даже не пытаемся писать
    assert sorted(m['chat_id'] for m in telegram_api.sent_messages()) == [1001, 1002]


@pytest.mark.asyncio
async def test_broadcast_empty_text(db_session, make_telegram, make_telegram_user, telegram_api):
    await make_telegram_user(1001)
    assert await make_telegram(db_session).send_broadcast_message('   ') == 0
    assert telegram_api.requests == []


@pytest.mark.asyncio
async def test_broadcast_with_photos_skips_photos_after_failed_text(
    db_session, make_telegram, make_telegram_user, telegram_api, make_image,
):
    await make_telegram_user(1001)
    await make_telegram_user(1002)
    telegram_api.fail_chat_ids.add(1002)

    sent = await make_telegram(db_session).send_broadcast_with_photos('Новинки', [make_image(), make_image()])
    assert sent == 1
    assert len(telegram_api.calls('sendPhoto')) == 2


# --- Публикации в канал ---

@pytest.mark.asyncio
async def test_channel_single_photo_uses_send_photo(db_session, make_telegram, telegram_api, make_image):
    ok = await make_telegram(db_session).send_message_with_photos_to_channel('Caption text', [make_image()])
    assert ok is True
    assert [m for m, _ in telegram_api.requests] == ['sendPhoto']
    assert b'Caption text' in telegram_api.calls('sendPhoto')[0].content


@pytest.mark.asyncio
async def test_channel_media_group_caption_on_last_item(db_session, make_telegram, telegram_api, make_image):
    photos = [make_image(), make_image(), make_image()]
    ok = await make_telegram(db_session).send_message_with_photos_to_channel('Group caption', photos)
    assert ok is True

    request = telegram_api.calls('sendMediaGroup')[0]
    body = request.content
    for index in range(3):
        assert f'attach://photo{index}'.encode() in body
    assert body.count(b'"caption"') == 1
    assert body.index(b'attach://photo2') < body.index(b'"caption"')


@pytest.mark.asyncio
async def test_channel_more_than_ten_photos_split(db_session, make_telegram, telegram_api, make_image):
    photos = [make_image(size=(20, 20)) for _ in range(12)]
    assert await make_telegram(db_session).send_message_with_photos_to_channel('Много фото', photos) is True

    groups = telegram_api.calls('sendMediaGroup')
    assert len(groups) == 2
    assert b'"caption"' not in groups[0].content
    assert b'"caption"' in groups[1].content


@pytest.mark.asyncio
async def test_channel_long_text_sent_separately(db_session, make_telegram, telegram_api, make_image):
    text = 'x' * 1500
    assert await make_telegram(db_session).send_message_with_photos_to_channel(text, [make_image()]) is True

    assert [m for m, _ in telegram_api.requests] == ['sendPhoto', 'sendMessage']
    assert b'caption' not in telegram_api.calls('sendPhoto')[0].content
    assert telegram_api.sent_messages()[0]['text'] == text


@pytest.mark.asyncio
async def test_channel_photo_failure_falls_back_to_text(
    db_session, session_factory, make_telegram, telegram_api, make_image,
):
    telegram_api.fail_methods.add('sendMediaGroup')

    ok = await make_telegram(db_session).send_message_with_photos_to_channel(
        'Пост', [make_image(), make_image()], product_info='#1 Платье',
    )
    assert ok is True
    assert telegram_api.sent_messages()[0]['chat_id'] == '@bebochka_test'

    errors = await logged_errors(session_factory)
    assert len(errors) == 1
    assert errors[0].error_type == ERROR_API
    assert errors[0].image_count == 2
    assert errors[0].product_info == '#1 Платье'
    assert errors[0].channel_id == '@bebochka_test'
    # Токен в журнал не попадает
    assert 'test-token' not in (errors[0].details or '')


@pytest.mark.asyncio
async def test_channel_missing_file_is_logged(db_session, session_factory, make_telegram, telegram_api):
    ok = await make_telegram(db_session).send_message_with_photos_to_channel('Пост', ['/uploads/nope.jpg'])
    assert ok is True
    assert [m for m, _ in telegram_api.requests] == ['sendMessage']

    errors = await logged_errors(session_factory)
    assert errors[0].error_type == ERROR_FILE_NOT_FOUND


@pytest.mark.asyncio
async def test_send_products_to_channel(db_session, make_telegram, make_product, telegram_api, make_image):
    first = await make_product(name='Платье', images=[make_image()])
    second = await make_product(name='Шорты')
    telegram = make_telegram(db_session)

    sent, failed = await telegram.send_products_to_channel([first, second])
    assert (sent, failed) == (2, 0)
    assert len(telegram_api.calls('sendPhoto')) == 1
    assert 'Шорты' in telegram_api.sent_messages()[0]['text']


def test_product_caption_format():
    class Item:
        name = 'Платье <лето>'
        brand = 'Zara'
        size = '110'
        color = 'Белый'
        condition = 'Отличное'
        description = None
        price = 12500

    caption = format_product_caption(Item())
    assert caption.startswith('<b>Платье &lt;лето&gt;</b>')
    assert 'Размер: 110' in caption
    assert caption.endswith('Цена: 12 500 ₽')
    assert format_price(999) == '999'


# --- Эндпоинты ---

@pytest.mark.asyncio
async def test_broadcast_endpoint(ac: AsyncClient, auth_headers: dict, make_telegram_user):
    await make_telegram_user(1001)
    response = await ac.post('/telegram/broadcast', json={'message': 'Привет всем'}, headers=auth_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()['sent_count'] == 1


@pytest.mark.asyncio
async def test_broadcast_endpoint_rejects_empty(ac: AsyncClient, auth_headers: dict):
    response = await ac.post('/telegram/broadcast', json={'message': ' '}, headers=auth_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_telegram_endpoints_require_admin(ac: AsyncClient):
    response = await ac.post('/telegram/broadcast', json={'message': 'hi'})
    assert response.status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN)


@pytest.mark.asyncio
async def test_send_products_endpoint_unknown_ids(ac: AsyncClient, auth_headers: dict):
    response = await ac.post('/telegram/send-products', json={'product_ids': [404]}, headers=auth_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_send_status_endpoint(
    ac: AsyncClient, auth_headers: dict, session_factory, make_telegram_user, telegram_api,
):
    customer = await make_telegram_user(5005)
    async with session_factory() as session:
        order = Order(
            user_id=customer.id, order_number='ORD-20261018-ABCDEF12', customer_name='Анна',
            customer_phone='+7999', total_amount=1500, status='В пути',
        )
        unlinked = Order(
            order_number='ORD-20261018-12345678', customer_name='Гость',
            customer_phone='+7888', total_amount=100, status='В сборке',
        )
        session.add_all([order, unlinked])
        await session.commit()

    response = await ac.post('/telegram/send-status', json={'order_id': order.id}, headers=auth_headers)
    assert response.json() == {'success': True}
    message = telegram_api.sent_messages()[0]
    assert message['chat_id'] == 5005
    assert 'В пути' in message['text']

    response = await ac.post('/telegram/send-status', json={'order_id': unlinked.id}, headers=auth_headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_error_log_grouped_by_store_day(ac: AsyncClient, auth_headers: dict, session_factory):
    async with session_factory() as session:
        session.add_all([
            # 22:30 UTC - это уже следующий день по Москве
            TelegramError(error_date=datetime(2026, 10, 17, 22, 30, tzinfo=UTC), message='late',
                          error_type=ERROR_API),
            TelegramError(error_date=datetime(2026, 10, 17, 10, 0, tzinfo=UTC), message='morning',
                          error_type=ERROR_API),
        ])
        await session.commit()

    grouped = (await ac.get('/telegram-errors', headers=auth_headers)).json()
    assert list(grouped) == ['2026-10-18', '2026-10-17']
    assert grouped['2026-10-18'][0]['message'] == 'late'


@pytest.mark.asyncio
async def test_error_log_delete(ac: AsyncClient, auth_headers: dict, session_factory):
    async with session_factory() as session:
        first = TelegramError(error_date=utcnow(), message='one', error_type=ERROR_API)
        second = TelegramError(error_date=utcnow(), message='two', error_type=ERROR_API)
        session.add_all([first, second])
        await session.commit()

    assert (await ac.delete(f'/telegram-errors/{first.id}', headers=auth_headers)).status_code == 204
    assert (await ac.delete(f'/telegram-errors/{first.id}', headers=auth_headers)).status_code == 404
    assert (await ac.delete('/telegram-errors/all', headers=auth_headers)).status_code == 204
    assert (await ac.get('/telegram-errors', headers=auth_headers)).json() == {}
