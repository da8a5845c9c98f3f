"""Request-scoped dependencies: settings, gateway, identity and services."""
from typing import Annotated, TypeAlias

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from readhub.core.config import BaseAppSettings
from readhub.core.exceptions import UnauthorizedError, ValidationError
from readhub.core.security import TokenExpiredError, TokenValidationError, decode_token
from readhub.db.session import get_db
from readhub.models.ids import parse_identifier
from readhub.services.payment_gateway import PaystackGateway
from readhub.services.subscription_service import SubscriptionService
from readhub.services.webhook_service import WebhookIngestion


def get_app_settings(request: Request) -> BaseAppSettings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("Application settings not initialised.")
    return settings


def get_payment_gateway(request: Request) -> PaystackGateway:
    gateway = getattr(request.app.state, "payment_gateway", None)
    if gateway is None:
        raise RuntimeError("Payment gateway not initialised.")
    return gateway


SettingsDep: TypeAlias = Annotated[BaseAppSettings, Depends(get_app_settings)]
GatewayDep: TypeAlias = Annotated[PaystackGateway, Depends(get_payment_gateway)]
DbDep: TypeAlias = Annotated[Session, Depends(get_db)]


def get_current_user_id(settings: SettingsDep, authorization: str = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = decode_token(token, settings.JWT_SECRET)
        return parse_identifier(payload["sub"], "sub")
    except TokenExpiredError as exc:
        raise UnauthorizedError("Token expired") from exc
    except (TokenValidationError, ValidationError) as exc:
        raise UnauthorizedError("Invalid token") from exc


CurrentUserDep: TypeAlias = Annotated[str, Depends(get_current_user_id)]


def get_subscription_service(db: DbDep, gateway: GatewayDep, settings: SettingsDep) -> SubscriptionService:
    return SubscriptionService(db, gateway, settings)


SubscriptionServiceDep: TypeAlias = Annotated[SubscriptionService, Depends(get_subscription_service)]


def get_webhook_ingestion(db: DbDep, gateway: GatewayDep, service: SubscriptionServiceDep) -> WebhookIngestion:
    return WebhookIngestion(db, gateway, service)


WebhookIngestionDep: TypeAlias = Annotated[WebhookIngestion, Depends(get_webhook_ingestion)]
