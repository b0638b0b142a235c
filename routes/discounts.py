from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from core.db import get_db
from models.discount import Discount
from models.user import User
from schemas.discount import DiscountCreate, DiscountOut
from security.auth import require_admin
from services.discounts import normalize_code

router = APIRouter(prefix="/admin/discounts", tags=["admin"])


def _get_discount(db: Session, discount_id: str) -> Discount:
    discount = db.get(Discount, discount_id)
    if not discount:
        raise HTTPException(status_code=404, detail="Discount not found")
    return discount


@router.get("/", response_model=List[DiscountOut])
def list_discounts(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(Discount).order_by(Discount.created_at.desc()).all()


@router.post("/", response_model=DiscountOut, status_code=201)
def create_discount(data: DiscountCreate, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    code = normalize_code(data.code)
    if db.query(Discount).filter(Discount.code == code).one_or_none():
        raise HTTPException(status_code=400, detail="Discount code already exists")
    discount = Discount(
        code=code,
        type=data.type,
        value=data.value,
        max_uses=data.max_uses,
        expires_at=data.expires_at,
        is_active=True,
    )
    db.add(discount)
    db.commit()
    db.refresh(discount)
    return discount


@router.patch("/{discount_id}/toggle", response_model=DiscountOut)
def toggle_discount(discount_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    discount = _get_discount(db, discount_id)
    discount.is_active = not discount.is_active
    db.commit()
    db.refresh(discount)
    return discount


@router.delete("/{discount_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_discount(discount_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    discount = _get_discount(db, discount_id)
    db.delete(discount)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
