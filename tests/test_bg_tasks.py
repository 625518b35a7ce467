import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

import bg_tasks
from bg_tasks import PUBLICATION_BROADCAST_TEXT, ExpiringIdCache, PollingWorker, PublicationNotifier
from models import Announcement, CartItem
from services import announcement_service
from timeutils import utcnow


async def add_announcement(session_factory, **fields) -> Announcement:
    values = {
        'message': 'Новое поступление!',
        'scheduled_at': utcnow(),
        'product_ids': [],
        'collage_images': [],
        'is_sent': False,
        'sent_count': 0,
        'created_at': utcnow(),
    }
    values.update(fields)
    async with session_factory() as session:
        announcement = Announcement(**values)
        session.add(announcement)
        await session.commit()
        return announcement


# --- Рассылка отложенных объявлений ---

@pytest.mark.asyncio
async def test_due_announcement_is_dispatched(
    db_session, session_factory, make_telegram, make_telegram_user, telegram_api,
):
    await make_telegram_user(1001)
    await make_telegram_user(1002)
    due = await add_announcement(session_factory, scheduled_at=utcnow() - timedelta(minutes=1))

    dispatched = await announcement_service.dispatch_due(db_session, make_telegram(db_session))
    assert dispatched == 1

    async with session_factory() as session:
        stored = await session.get(Announcement, due.id)
        assert stored.is_sent is True
        assert stored.sent_at is not None
        assert stored.sent_count == 2

    texts = {m['text'] for m in telegram_api.sent_messages()}
    assert texts == {'Новое поступление!'}

    # Второй проход ничего не отправляет повторно
    assert await announcement_service.dispatch_due(db_session, make_telegram(db_session)) == 0


@pytest.mark.asyncio
async def test_old_and_future_announcements_are_ignored(
    db_session, session_factory, make_telegram, make_telegram_user, telegram_api,
):
    await make_telegram_user(1001)
    await add_announcement(session_factory, scheduled_at=utcnow() - timedelta(minutes=10))
    await add_announcement(session_factory, scheduled_at=utcnow() + timedelta(minutes=10))

    assert await announcement_service.dispatch_due(db_session, make_telegram(db_session)) == 0
    assert telegram_api.requests == []


@pytest.mark.asyncio
async def test_announcement_with_collages_sends_photos(
    db_session, session_factory, make_telegram, make_telegram_user, telegram_api, make_image,
):
    await make_telegram_user(1001)
    collage = make_image()
    await add_announcement(
        session_factory,
        scheduled_at=utcnow() - timedelta(seconds=30),
        collage_images=[collage],
    )

    assert await announcement_service.dispatch_due(db_session, make_telegram(db_session)) == 1
    # Сначала текст, потом фото
    assert [method for method, _ in telegram_api.requests] == ['sendMessage', 'sendPhoto']


@pytest.mark.asyncio
async def test_announcement_without_recipients_still_marked(db_session, session_factory, make_telegram):
    due = await add_announcement(session_factory, scheduled_at=utcnow() - timedelta(minutes=1))

    assert await announcement_service.dispatch_due(db_session, make_telegram(db_session)) == 1
    async with session_factory() as session:
        stored = await session.get(Announcement, due.id)
        assert stored.is_sent is True
        assert stored.sent_count == 0


# --- Общий цикл опроса ---

@pytest.mark.asyncio
async def test_worker_iteration_error_is_logged_not_raised(session_factory, caplog):
    async def broken_job(session):
        raise RuntimeError('database is down')

    worker = PollingWorker('broken', 60, broken_job, session_factory, asyncio.Event())
    await worker.run_once()

    assert 'Ошибка в итерации воркера' in caplog.text


@pytest.mark.asyncio
async def test_worker_stops_on_event(session_factory):
    stop_event = asyncio.Event()
    calls = []

    async def job(session):
        calls.append(session)
        stop_event.set()

    worker = PollingWorker('once', 3600, job, session_factory, stop_event)
    await asyncio.wait_for(worker.run(), timeout=5)

    assert len(calls) == 1


def test_build_workers_names(session_factory):
    workers = bg_tasks.build_workers(session_factory, asyncio.Event())
    assert [w.name for w in workers] == ['cart-cleanup', 'announcements', 'publication-notifier']


# --- Уведомление о публикации ---

def test_expiring_cache_prunes_old_entries():
    now = utcnow()
    cache = ExpiringIdCache(timedelta(minutes=60), max_size=2)
    cache.add(1, now - timedelta(minutes=61))
    cache.add(2, now)

    cache.prune(now)
    assert 1 not in cache
    assert 2 in cache

    cache.add(3, now)
    cache.add(4, now + timedelta(seconds=1))
    # Предел размера выталкивает самые старые
    assert len(cache) == 2
    assert 4 in cache


@pytest.mark.asyncio
async def test_publication_notifier_sends_once_per_product(
    db_session, make_product, make_telegram, make_telegram_user, telegram_api,
):
    await make_telegram_user(1001)
    now = utcnow()
    await make_product(published_at=now - timedelta(minutes=2))
    await make_product(name='Еще один', published_at=now - timedelta(minutes=1))

    notifier = PublicationNotifier(window_minutes=5, dedup_ttl_minutes=60, telegram_factory=make_telegram)
    assert await notifier(db_session, now=now) == 1
    # Тот же тик еще раз: товары уже отмечены
    assert await notifier(db_session, now=now + timedelta(minutes=1)) == 0

    messages = telegram_api.sent_messages()
    assert len(messages) == 1
    assert messages[0]['text'] == PUBLICATION_BROADCAST_TEXT


@pytest.mark.asyncio
async def test_publication_notifier_marks_even_when_send_fails(
    db_session, make_product, make_telegram, make_telegram_user, telegram_api,
):
    await make_telegram_user(1001)
    telegram_api.fail_methods.add('sendMessage')
    now = utcnow()
    product = await make_product(published_at=now - timedelta(minutes=1))

    notifier = PublicationNotifier(telegram_factory=make_telegram)
    assert await notifier(db_session, now=now) == 0
    assert product.id in notifier.notified

    await notifier(db_session, now=now)
    assert len(telegram_api.calls('sendMessage')) == 1


@pytest.mark.asyncio
async def test_publication_notifier_idle_without_new_products(db_session, make_product, make_telegram, telegram_api):
    await make_product()
    notifier = PublicationNotifier(telegram_factory=make_telegram)
    assert await notifier(db_session) == 0
    assert telegram_api.requests == []


# --- Очистка корзины ---

@pytest.mark.asyncio
async def test_cleanup_cart_job(db_session, session_factory, make_product):
    product = await make_product()
    now = utcnow()
    async with session_factory() as session:
        session.add(CartItem(session_id='old', product_id=product.id, quantity=1,
                             created_at=now - timedelta(hours=1), updated_at=now - timedelta(hours=1)))
        session.add(CartItem(session_id='new', product_id=product.id, quantity=1,
                             created_at=now, updated_at=now))
        await session.commit()

    assert await bg_tasks.cleanup_cart(db_session) == 1
    assert list(await db_session.scalars(select(CartItem.session_id))) == ['new']
