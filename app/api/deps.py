import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session

from app.core.config import settings
from app.db import get_session
from app.services.price_resolution import PriceResolver
from app.services.price_store import PriceStore
from app.services.pricing_clients import PricingClients


def get_pricing_clients(request: Request) -> PricingClients:
    """
    Pricing clients built once in the app lifespan.
    """
    clients: Optional[PricingClients] = getattr(request.app.state, "clients", None)
    if clients is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pricing clients are not initialised",
        )
    return clients


def get_price_store(session: Session = Depends(get_session)) -> PriceStore:
    return PriceStore(session)


def get_price_resolver(
    store: PriceStore = Depends(get_price_store),
    clients: PricingClients = Depends(get_pricing_clients),
) -> PriceResolver:
    return PriceResolver.from_clients(store, clients, settings)


def verify_cron_secret(request: Request) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` on scheduler and admin
    endpoints. With no secret configured every call is rejected.
    """
    secret = settings.CRON_SECRET
    provided = request.headers.get("Authorization", "")
    if not secret or not hmac.compare_digest(provided.encode("utf-8"), f"Bearer {secret}".encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
