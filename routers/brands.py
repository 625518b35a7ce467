from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_admin
from database import get_session
from errors import ConflictError, NotFoundError
from models import Brand

router = APIRouter(prefix='/brands', tags=['Brands'])


class BrandCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class BrandOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


@router.get('', response_model=List[BrandOut])
async def get_brands(search: Optional[str] = None, session: AsyncSession = Depends(get_session)):
    query = select(Brand).order_by(Brand.name)
    if search:
        query = query.where(func.lower(Brand.name).contains(search.strip().lower()))
    return list(await session.scalars(query))


@router.post('', response_model=BrandOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(get_current_admin)])
async def create_brand(data: BrandCreate, session: AsyncSession = Depends(get_session)):
    name = data.name.strip()
    existing = await session.scalar(select(Brand).where(func.lower(Brand.name) == name.lower()))
    if existing:
        raise ConflictError(f"Бренд '{name}' уже существует")
    brand = Brand(name=name)
    session.add(brand)
    await session.commit()
    return brand


@router.get('/{brand_id}', response_model=BrandOut)
async def get_brand(brand_id: int, session: AsyncSession = Depends(get_session)):
    brand = await session.get(Brand, brand_id)
    if brand is None:
        raise NotFoundError(f"Бренд {brand_id} не найден")
    return brand
