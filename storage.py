# Локальное хранилище картинок: одна плоская папка, в БД лежат пути вида /uploads/<file>.
import logging
import os
import uuid  # Чтобы создавать уникальные имена (photo.jpg -> 123-abc-456.jpg)
from pathlib import Path

from fastapi import UploadFile

from config import UPLOADS_DIR
from errors import ValidationError

logger = logging.getLogger(__name__)

URL_PREFIX = '/uploads/'
ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}


class ImageStorage:
    def __init__(self, root: str | os.PathLike = UPLOADS_DIR):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def new_name(self, extension: str) -> str:
        return f"{uuid.uuid4()}{extension}"

    def url_for(self, filename: str) -> str:
        return f"{URL_PREFIX}{filename}"

    async def save_upload(self, file: UploadFile) -> str:
        """
        Сохраняет загруженную картинку и возвращает относительный путь.
        """
        # 1. Проверяем формат файла (только картинки)
        if not file.content_type or not file.content_type.startswith('image/'):
            raise ValidationError(f"Файл {file.filename} не является изображением")

        extension = Path(file.filename or '').suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            extension = '.jpg'

        # 2. Пишем файл на диск под уникальным именем
        filename = self.new_name(extension)
        content = await file.read()
        (self.root / filename).write_bytes(content)
        logger.info(f"Сохранено изображение {filename} ({len(content)} байт)")

        return self.url_for(filename)

    def resolve(self, relative: str) -> Path:
        """Переводит /uploads/<file> в путь на диске. Выйти за пределы папки нельзя."""
        name = Path(relative.removeprefix(URL_PREFIX).lstrip('/')).name
        return self.root / name

    def delete(self, relative: str) -> None:
        path = self.resolve(relative)
        if path.exists():
            path.unlink()


def get_storage() -> ImageStorage:
    # Зависимость для эндпоинтов; в тестах подменяется на временную папку
    return ImageStorage()
