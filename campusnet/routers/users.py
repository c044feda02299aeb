from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, PaginationParams, get_current_user
from campusnet.schemas import PaginatedResponse, ProfileCreate, ProfileUpdate
from campusnet.services import profile_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/profile", status_code=201)
async def create_profile(
    data: ProfileCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await profile_service.create_profile(db, user, data)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A profile with this email already exists")


@router.get("/profile/me")
async def my_profile(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    profile = await profile_service.get_profile(db, user.id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.get("/profile/{user_id}")
async def get_profile(user_id: int, db: AsyncSession = Depends(get_db)):
    profile = await profile_service.get_profile(db, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    profile = await profile_service.update_profile(db, user.id, data)
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.delete("/profile")
async def delete_profile(user: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    deleted = await profile_service.delete_profile(db, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Profile not found")
    return {"message": "Profile deleted successfully"}


@router.get("/search")
async def search_profiles(
    q: str | None = Query(None, max_length=100),
    role: str | None = Query(None),
    department: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await profile_service.search_profiles(db, q, role, department)


@router.get("/all")
async def all_profiles(db: AsyncSession = Depends(get_db)):
    return await profile_service.all_profiles(db)


@router.get("", response_model=PaginatedResponse)
async def list_profiles(pagination: PaginationParams = Depends(), db: AsyncSession = Depends(get_db)):
    return await profile_service.list_profiles(db, pagination.page, pagination.page_size)
