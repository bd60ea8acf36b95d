"""
FastAPI application exposing the shopcore services.

Every route authenticates a bearer token through the configured
``Authenticator`` except ``/health`` and the payment webhook, which is
authenticated by its signature instead. Errors are rendered as
``{"error": kind, "message": ...}`` with the status code of the error.
"""

import logging
import traceback
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shopcore.api.schemas import (
    AdjustInventoryBody,
    ApplyDiscountBody,
    BulkAdjustBody,
    CreateOrderBody,
    CreatePaymentBody,
    RefundPaymentBody,
    RetryPaymentBody,
)
from shopcore.auth import Authenticator, Principal
from shopcore.exceptions import AuthenticationError, ShopError
from shopcore.orders import OrderStatusUpdate
from shopcore.payments import SIGNATURE_HEADER, ReconciliationOutcome
from shopcore.services import ShopServices
from shopcore.shipping import ShippingRequest, ShippingStatusUpdate

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)
router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================


def get_services(request: Request) -> ShopServices:
    return request.app.state.services


async def current_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Principal:
    """Resolve the bearer token into a principal or fail with 401."""
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    authenticator: Authenticator = request.app.state.authenticator
    principal = await authenticator.authenticate(credentials.credentials)
    if principal is None:
        raise AuthenticationError("Invalid bearer token")
    return principal


Services = Annotated[ShopServices, Depends(get_services)]
CurrentPrincipal = Annotated[Principal, Depends(current_principal)]


# =============================================================================
# Routes
# =============================================================================


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/orders", status_code=201)
async def create_order(
    body: CreateOrderBody, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    order = await services.orders.create(
        principal, body.seller_id, body.items, coupon_code=body.coupon_code
    )
    return order.to_dict()


@router.get("/orders/{order_id}")
async def get_order(
    order_id: UUID, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    order = await services.orders.get(order_id, principal)
    return order.to_dict()


@router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: UUID,
    body: OrderStatusUpdate,
    services: Services,
    principal: CurrentPrincipal,
) -> dict[str, Any]:
    order = await services.orders.transition(principal, order_id, body.status)
    return order.to_dict()


@router.post("/payments", status_code=201)
async def create_payment(
    body: CreatePaymentBody, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    payment = await services.payments.create(
        principal,
        body.order_id,
        body.method,
        amount=body.amount,
        transaction_id=body.transaction_id,
    )
    return payment.to_dict()


@router.patch("/payments/{payment_id}/retry")
async def retry_payment(
    payment_id: UUID,
    services: Services,
    principal: CurrentPrincipal,
    body: RetryPaymentBody | None = None,
) -> dict[str, Any]:
    transaction_id = body.transaction_id if body is not None else None
    payment = await services.payments.retry(principal, payment_id, transaction_id)
    return payment.to_dict()


@router.patch("/payments/{payment_id}/refund")
async def refund_payment(
    payment_id: UUID,
    services: Services,
    principal: CurrentPrincipal,
    body: RefundPaymentBody | None = None,
) -> dict[str, Any]:
    reason = body.reason if body is not None else None
    payment = await services.payments.refund(principal, payment_id, reason)
    return payment.to_dict()


@router.post("/discounts/apply")
async def apply_discount(
    body: ApplyDiscountBody, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    applied = await services.discounts.validate_and_apply(principal, body.code, body.context())
    return applied.model_dump(mode="json")


@router.patch("/inventory/{inventory_id}/adjust")
async def adjust_inventory(
    inventory_id: UUID,
    body: AdjustInventoryBody,
    services: Services,
    principal: CurrentPrincipal,
) -> dict[str, Any]:
    inventory = await services.inventory.adjust_by_id(inventory_id, body.delta, principal)
    return inventory.to_dict()


@router.post("/inventory/bulk-adjust")
async def bulk_adjust_inventory(
    body: BulkAdjustBody, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    result = await services.inventory.bulk_adjust(body.entries, principal)
    return result.model_dump(mode="json")


@router.post("/shipping", status_code=201)
async def create_shipping(
    body: ShippingRequest, services: Services, principal: CurrentPrincipal
) -> dict[str, Any]:
    shipping = await services.shipping.create(principal, body)
    return shipping.to_dict()


@router.patch("/shipping/{shipping_id}/status")
async def update_shipping_status(
    shipping_id: UUID,
    body: ShippingStatusUpdate,
    services: Services,
    principal: CurrentPrincipal,
) -> dict[str, Any]:
    shipping = await services.shipping.update_status(principal, shipping_id, body)
    return shipping.to_dict()


@router.post("/webhooks/payments")
async def payment_webhook(request: Request, services: Services) -> dict[str, Any]:
    """Signed provider callback; the raw body is verified before parsing."""
    body = await request.body()
    result = await services.webhooks.handle(body, request.headers.get(SIGNATURE_HEADER))
    ignored = result.outcome in (
        ReconciliationOutcome.IGNORED,
        ReconciliationOutcome.UNKNOWN_TRANSACTION,
    )
    return {"received": True, "ignored": ignored, "outcome": str(result.outcome)}


# =============================================================================
# Error handling
# =============================================================================


def _error_body(request: Request, body: dict[str, Any], exc: Exception) -> dict[str, Any]:
    if request.app.state.services.config.development_mode:
        body["traceback"] = "".join(traceback.format_exception(exc))
    return body


async def handle_shop_error(request: Request, exc: ShopError) -> JSONResponse:
    logger.info(
        "%s %s failed with %s: %s",
        request.method,
        request.url.path,
        exc.kind,
        exc.message,
        extra={"error": exc.kind, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.to_dict(), exc),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    return JSONResponse(
        status_code=400,
        content=_error_body(request, {"error": "validation_error", "message": message}, exc),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        extra={"error_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(
            request, {"error": "internal_error", "message": "Internal server error"}, exc
        ),
    )


def create_app(services: ShopServices, authenticator: Authenticator) -> FastAPI:
    """
    Build the HTTP application.

    Example:
        >>> services = build_in_memory_services(ShopConfig(webhook_secret="whsec_test"))
        >>> app = create_app(services, StaticTokenAuthenticator({"token": admin}))
    """
    app = FastAPI(title="shopcore", debug=False)
    app.state.services = services
    app.state.authenticator = authenticator

    app.include_router(router)
    app.add_exception_handler(ShopError, handle_shop_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    return app


__all__ = ["create_app", "current_principal", "get_services", "router"]
