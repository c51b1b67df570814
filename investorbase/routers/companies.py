from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.database import get_db
from investorbase.models.company import Company
from investorbase.schemas.companies import CompanyCreate, CompanyOut


router = APIRouter()


@router.get("", response_model=list[CompanyOut], status_code=200)
async def list_companies(db: AsyncSession = Depends(get_db)):
    """
    List all companies by name.

    **Response:** list[CompanyOut]
    """
    rows = (await db.execute(select(Company).order_by(Company.name))).scalars().all()
    return [CompanyOut.model_validate(c) for c in rows]


@router.post("", response_model=CompanyOut, status_code=201)
async def create_company(
    payload: CompanyCreate,
    db: AsyncSession = Depends(get_db),
) -> CompanyOut:
    """
    Create a new company.

    **Request:** CompanyCreate (name, sector?, stage?, website?)
    **Response:** CompanyOut
    **Errors:** 409 (company exists)
    """
    # Dedup: case-insensitive name check
    existing = await db.execute(
        select(Company).where(func.lower(Company.name) == func.lower(payload.name.strip()))
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail=f"Company '{payload.name}' already exists")

    company = Company(**payload.model_dump())
    company.name = company.name.strip()
    db.add(company)
    await db.commit()
    await db.refresh(company)
    return CompanyOut.model_validate(company)


@router.get("/{company_id}", response_model=CompanyOut, status_code=200)
async def get_company(
    company_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> CompanyOut:
    """
    Get a single company by ID.

    **Errors:** 404 (not found)
    """
    company = await db.get(Company, company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")
    return CompanyOut.model_validate(company)
