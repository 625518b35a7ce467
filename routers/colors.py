from typing import List

from fastapi import APIRouter

router = APIRouter(prefix='/colors', tags=['Colors'])

# Фиксированный справочник цветов для карточки товара
COLORS = [
    "Белый", "Черный", "Серый", "Бежевый", "Коричневый",
    "Красный", "Розовый", "Оранжевый", "Желтый",
    "Зеленый", "Голубой", "Синий", "Фиолетовый",
    "Многоцветный", "Другой",
]


@router.get('', response_model=List[str])
async def get_colors():
    return COLORS
