from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.clients import ServiceClient, get_service_client
from campusnet.database import get_db
from campusnet.dependencies import CurrentUser, get_current_user, require_internal
from campusnet.schemas import ConnectRequest
from campusnet.services import network_service

router = APIRouter(prefix="/api/network", tags=["network"])


@router.post("/connect/{user_id}", status_code=201)
async def send_request(
    user_id: int,
    background_tasks: BackgroundTasks,
    data: ConnectRequest = ConnectRequest(),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    connection = await network_service.send_request(db, user.id, user_id, data.message)
    background_tasks.add_task(
        client.notify,
        user_id=user_id,
        type="CONNECTION_REQUEST",
        content="{actor} sent you a connection request",
        actor_id=user.id,
        related_id=connection["id"],
    )
    return connection


@router.put("/accept/{connection_id}")
async def accept_request(
    connection_id: int,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    connection = await network_service.accept_request(db, connection_id, user.id)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection request not found")
    background_tasks.add_task(
        client.notify,
        user_id=connection["requester_id"],
        type="CONNECTION_ACCEPTED",
        content="{actor} accepted your connection request",
        actor_id=user.id,
        related_id=connection["id"],
    )
    return connection


@router.put("/reject/{connection_id}")
async def reject_request(
    connection_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    connection = await network_service.reject_request(db, connection_id, user.id)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection request not found")
    return connection


@router.delete("/remove/{connection_id}")
async def remove_connection(
    connection_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    removed = await network_service.remove_connection(db, connection_id, user.id)
    if not removed:
        raise HTTPException(status_code=404, detail="Connection not found")
    return {"message": "Connection removed successfully"}


@router.get("/connections")
async def get_connections(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await network_service.get_connections(db, user.id, client)


@router.get("/requests/pending")
async def pending_requests(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await network_service.get_pending_requests(db, user.id, client)


@router.get("/requests/sent")
async def sent_requests(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await network_service.get_sent_requests(db, user.id, client)


@router.get("/suggestions")
async def suggestions(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: ServiceClient = Depends(get_service_client),
):
    return await network_service.get_suggestions(db, user.id, client)


@router.delete("/user/{user_id}", dependencies=[Depends(require_internal)])
async def delete_user_connections(user_id: int, db: AsyncSession = Depends(get_db)):
    count = await network_service.delete_user_connections(db, user_id)
    return {"message": f"Deleted {count} connection(s) for user {user_id}", "deleted": count}
