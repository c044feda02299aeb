from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, get_service_client
from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, PaginationParams, get_current_user, require_internal
from campusnet.schemas import PaginatedResponse, PostCreate, PostUpdate
from campusnet.services import post_service

router = APIRouter(prefix="/api/feed", tags=["feed"])


@router.get("", response_model=PaginatedResponse)
@router.get("/posts", response_model=PaginatedResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await post_service.list_posts(db, pagination.page, pagination.page_size, client)


@router.post("/posts", status_code=201)
async def create_post(
    data: PostCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    post = await post_service.create_post(db, user.id, data)
    return (await post_service.enrich_posts([post], client))[0]


@router.get("/my-posts", response_model=PaginatedResponse)
async def my_posts(
    pagination: PaginationParams = Depends(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await post_service.list_user_posts(
        db, user.id, pagination.page, pagination.page_size, client, include_archived=True
    )


@router.get("/posts/user/{user_id}", response_model=PaginatedResponse)
async def user_posts(
    user_id: int,
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await post_service.list_user_posts(db, user_id, pagination.page, pagination.page_size, client)


@router.get("/posts/{post_id}")
async def get_post(
    post_id: int,
    count_view: bool = Query(True),
    enrich: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    post = await post_service.get_post(db, post_id, count_view=count_view)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    if enrich:
        post = (await post_service.enrich_posts([post], client))[0]
    return post


@router.put("/posts/{post_id}")
async def update_post(
    post_id: int,
    data: PostUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    post = await post_service.update_post(db, post_id, user.id, data)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    deleted = await post_service.delete_post(db, post_id, user.id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"message": "Post deleted successfully"}


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_posts(user_id: int, db: AsyncSession = Depends(get_db)):
    count = await post_service.delete_user_posts(db, user_id)
    return {"message": f"Deleted {count} post(s) for user {user_id}", "deleted": count}
