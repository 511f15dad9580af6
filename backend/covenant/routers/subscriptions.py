from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from sqlalchemy.orm import Session

from covenant.core.config import settings
from covenant.core.database import get_db
from covenant.core.errors import (
    DuplicateSubscriptionError,
    InvalidSubscriptionError,
    StoreError,
    SubscriptionClaimedError,
    SubscriptionConflictError,
)
from covenant.models.fulfillment import Fulfillment
from covenant.models.shared import parse_subscription_id
from covenant.repositories.fulfillment_repository import FulfillmentRepository
from covenant.repositories.subscription_repository import SubscriptionRepository
from covenant.schemas.fulfillment import FulfillmentResponse
from covenant.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from covenant.services.subscription_registry import SubscriptionRegistry

router = APIRouter()


def get_registry(db: Session = Depends(get_db)) -> SubscriptionRegistry:
    return SubscriptionRegistry(SubscriptionRepository(db))


def subscription_id_path(
    subscription_id: str = Path(description="Subscription UUID"),
) -> UUID:
    try:
        return parse_subscription_id(subscription_id)
    except InvalidSubscriptionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(status_code=503, detail=str(exc))


@router.get(
    "/",
    response_model=list[SubscriptionResponse],
    summary="List subscriptions",
)
async def list_subscriptions(
    response: Response,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.PAGE_LIMIT_CAP, ge=0),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> list[SubscriptionResponse]:
    """List live subscriptions. A limit of 0 means the page cap."""
    try:
        response.headers["X-Total-Count"] = str(registry.count())
        return registry.get_all(offset, limit)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/user/{user_id}",
    response_model=list[SubscriptionResponse],
    summary="List subscriptions for a user",
)
async def list_user_subscriptions(
    user_id: str,
    response: Response,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.PAGE_LIMIT_CAP, ge=0),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> list[SubscriptionResponse]:
    try:
        response.headers["X-Total-Count"] = str(registry.count(user_id=user_id))
        return registry.get_by_user(user_id, offset, limit)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/vendor/{vendor_id}",
    response_model=list[SubscriptionResponse],
    summary="List subscriptions for a vendor",
)
async def list_vendor_subscriptions(
    vendor_id: str,
    response: Response,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.PAGE_LIMIT_CAP, ge=0),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> list[SubscriptionResponse]:
    try:
        response.headers["X-Total-Count"] = str(registry.count(vendor_id=vendor_id))
        return registry.get_by_vendor(vendor_id, offset, limit)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.get(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Get subscription",
    responses={404: {"description": "Subscription not found"}},
)
async def get_subscription(
    subscription_id: UUID = Depends(subscription_id_path),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SubscriptionResponse:
    try:
        subscription = registry.get_by_id(subscription_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


@router.post(
    "/",
    response_model=SubscriptionResponse,
    status_code=201,
    summary="Create subscription",
    responses={
        409: {"description": "Subscription id already used"},
        422: {"description": "Validation error"},
    },
)
async def create_subscription(
    data: SubscriptionCreate,
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SubscriptionResponse:
    try:
        return registry.insert(data)
    except DuplicateSubscriptionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except InvalidSubscriptionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc


@router.put(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Update subscription",
    responses={
        404: {"description": "Subscription not found"},
        409: {"description": "Subscription changed concurrently"},
        422: {"description": "Validation error"},
    },
)
async def update_subscription(
    data: SubscriptionUpdate,
    subscription_id: UUID = Depends(subscription_id_path),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> SubscriptionResponse:
    try:
        subscription = registry.update(subscription_id, data)
    except InvalidSubscriptionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SubscriptionConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


@router.delete(
    "/{subscription_id}",
    status_code=204,
    summary="Delete subscription",
    responses={
        404: {"description": "Subscription not found"},
        409: {"description": "Subscription is being fulfilled"},
    },
)
async def delete_subscription(
    subscription_id: UUID = Depends(subscription_id_path),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> None:
    try:
        deleted = registry.delete(subscription_id)
    except SubscriptionClaimedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Subscription not found")


@router.get(
    "/{subscription_id}/fulfillments",
    response_model=list[FulfillmentResponse],
    summary="List fulfillment history",
    responses={404: {"description": "Subscription not found"}},
)
async def list_fulfillments(
    subscription_id: UUID = Depends(subscription_id_path),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.PAGE_LIMIT_CAP, ge=0),
    db: Session = Depends(get_db),
    registry: SubscriptionRegistry = Depends(get_registry),
) -> list[Fulfillment]:
    """Fulfillment history, newest first."""
    try:
        subscription = registry.get_by_id(subscription_id)
    except StoreError as exc:
        raise _store_unavailable(exc) from exc
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return FulfillmentRepository(db).get_by_subscription_id(subscription_id, offset, limit)
