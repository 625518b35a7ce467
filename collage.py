# Склейка до 4 фото товаров в одну картинку для объявлений.
import asyncio
import logging
import uuid

from PIL import Image, UnidentifiedImageError

from errors import ValidationError
from storage import ImageStorage

logger = logging.getLogger(__name__)

MAX_IMAGES = 4
CELL_SIZE = 800
PADDING = 10
BACKGROUND = (255, 255, 255)


def grid_for(count: int) -> tuple[int, int]:
    """Колонки и строки: 1-2 фото в один ряд, 3-4 фото сеткой 2x2."""
    cols = count if count <= 2 else 2
    rows = 1 if count <= 2 else 2
    return cols, rows


def build_collage(storage: ImageStorage, image_paths: list[str]) -> str:
    images = []
    for relative in image_paths[:MAX_IMAGES]:
        path = storage.resolve(relative)
        if not path.exists():
            logger.warning(f"Фото для коллажа не найдено: {relative}")
            continue
        try:
            with Image.open(path) as img:
                images.append(img.convert('RGB'))
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Не удалось открыть {relative}: {e}")

    if not images:
        raise ValidationError("Нет подходящих изображений для коллажа")

    cols, rows = grid_for(len(images))
    width = cols * CELL_SIZE + (cols + 1) * PADDING
    height = rows * CELL_SIZE + (rows + 1) * PADDING
    canvas = Image.new('RGB', (width, height), BACKGROUND)

    for index, img in enumerate(images):
        # Вписываем с сохранением пропорций и центрируем в ячейке
        img.thumbnail((CELL_SIZE, CELL_SIZE))
        col, row = index % cols, index // cols
        x = PADDING + col * (CELL_SIZE + PADDING) + (CELL_SIZE - img.width) // 2
        y = PADDING + row * (CELL_SIZE + PADDING) + (CELL_SIZE - img.height) // 2
        canvas.paste(img, (x, y))

    filename = f"collage_{uuid.uuid4().hex}.jpg"
    canvas.save(storage.root / filename, 'JPEG', quality=90)
    logger.info(f"Собран коллаж {filename} из {len(images)} фото")
    return storage.url_for(filename)


async def create_collage(storage: ImageStorage, image_paths: list[str]) -> str:
    # Pillow синхронный, уводим работу в поток, чтобы не блокировать event loop
    return await asyncio.to_thread(build_collage, storage, image_paths)
