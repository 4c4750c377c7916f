"""
Reference data routers — POST/GET /v1/pricing, POST/GET /v1/discounts
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.discount import Discount
from app.models.pricing import Pricing
from app.schemas.schemas import (
    DiscountCreateRequest, DiscountResponse, PricingCreateRequest, PricingResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/pricing", tags=["Pricing"])
discounts_router = APIRouter(prefix="/v1/discounts", tags=["Discounts"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PricingResponse)
async def create_pricing(payload: PricingCreateRequest, db: AsyncSession = Depends(get_db)):
    pricing = Pricing(**payload.model_dump())
    db.add(pricing)
    await db.commit()
    await db.refresh(pricing)
    logger.info("Created pricing tier=%s (%s)", pricing.id, pricing.name)
    return PricingResponse.model_validate(pricing)


@router.get("", response_model=list[PricingResponse])
async def list_pricing(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Pricing).order_by(Pricing.id))
    return [PricingResponse.model_validate(p) for p in result.scalars()]


@discounts_router.post("", status_code=status.HTTP_201_CREATED, response_model=DiscountResponse)
async def create_discount(payload: DiscountCreateRequest, db: AsyncSession = Depends(get_db)):
    existing = await db.execute(select(Discount.id).where(Discount.code == payload.code))
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Discount code already exists")

    discount = Discount(
        code=payload.code,
        discount_type=payload.discount_type.value,
        discount_value=payload.discount_value,
        expiry_date=payload.expiry_date,
        maximum_uses=payload.maximum_uses,
        current_uses=0,
    )
    db.add(discount)
    await db.commit()
    await db.refresh(discount)
    logger.info("Created discount=%s code=%s", discount.id, discount.code)
    return DiscountResponse.model_validate(discount)


@discounts_router.get("", response_model=list[DiscountResponse])
async def list_discounts(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Discount).order_by(Discount.id))
    return [DiscountResponse.model_validate(d) for d in result.scalars()]
