"""Public catalog routes."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, col, select

from uxkit.db.engine import get_session
from uxkit.models.pack import Pack

router = APIRouter()


@router.get("/", response_model=List[Pack])
def list_packs(
    limit: int = 50,
    offset: int = 0,
    session: Session = Depends(get_session),
):
    """List published packs, newest first."""
    packs = session.exec(
        select(Pack)
        .where(col(Pack.is_published).is_(True))
        .order_by(col(Pack.created_at).desc())
        .offset(offset)
        .limit(limit)
    ).all()
    return packs


@router.get("/{slug}", response_model=Pack)
def get_pack(slug: str, session: Session = Depends(get_session)):
    """Fetch a published pack by slug."""
    pack = session.exec(
        select(Pack)
        .where(Pack.slug == slug)
        .where(col(Pack.is_published).is_(True))
    ).first()
    if not pack:
        raise HTTPException(status_code=404, detail="Pack not found")
    return pack
