from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin
from database import get_session
from models import TelegramError
from timeutils import to_store_time

router = APIRouter(
    prefix='/telegram-errors',
    tags=['Telegram'],
    dependencies=[Depends(get_current_admin)]
)


class TelegramErrorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    error_date: datetime
    message: str
    details: Optional[str] = None
    error_type: str
    product_info: Optional[str] = None
    image_count: Optional[int] = None
    channel_id: Optional[str] = None


@router.get('', response_model=Dict[str, List[TelegramErrorOut]])
async def get_errors(session: AsyncSession = Depends(get_session)):
    """Журнал ошибок, сгруппированный по дням (по времени магазина), свежие первыми."""
    result = await session.scalars(
        select(TelegramError).order_by(TelegramError.error_date.desc(), TelegramError.id.desc())
    )
    grouped: Dict[str, List[TelegramErrorOut]] = {}
    for error in result:
        day = f"{to_store_time(error.error_date):%Y-%m-%d}"
        grouped.setdefault(day, []).append(TelegramErrorOut.model_validate(error))
    return grouped


# /all объявлен раньше /{error_id}
@router.delete('/all', status_code=status.HTTP_204_NO_CONTENT)
async def delete_all_errors(session: AsyncSession = Depends(get_session)):
    await session.execute(delete(TelegramError))
    await session.commit()


@router.delete('/{error_id}', status_code=status.HTTP_204_NO_CONTENT)
async def delete_error(error_id: int, session: AsyncSession = Depends(get_session)):
    error = await session.get(TelegramError, error_id)
    if error is None:
        raise HTTPException(status_code=404, detail="Ошибка не найдена")
    await session.delete(error)
    await session.commit()
