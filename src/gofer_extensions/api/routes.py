"""Lifecycle API routes the Gofer host calls on an extension."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response

from gofer_extensions.api.models import (
    DebugResponse,
    ExternalEventRequest,
    InfoResponse,
    SubscriptionRequest,
    UnsubscriptionRequest,
)
from gofer_extensions.engine.harness import HarnessState
from gofer_extensions.errors import ExtensionError
from gofer_extensions.models.subscription import SubscriptionKey

if TYPE_CHECKING:
    from gofer_extensions.engine.harness import ExtensionHarness

router = APIRouter()

# The harness is attached to app.state by the app factory.


def _get_harness(request: Request) -> ExtensionHarness:
    return request.app.state.harness


@router.get("/health", status_code=204)
async def health(request: Request) -> Response:
    """Liveness check. Unauthenticated."""
    harness = _get_harness(request)
    if harness.state in (HarnessState.DRAINING, HarnessState.EXITED):
        return Response(status_code=503)
    return Response(status_code=204)


@router.get("/info")
async def info(request: Request) -> InfoResponse:
    """Extension id and user-facing documentation."""
    return _get_harness(request).info()


@router.get("/debug")
async def debug(request: Request) -> DebugResponse:
    """Registered subscriptions and the non-secret config."""
    return DebugResponse(**_get_harness(request).debug_view())


@router.post("/subscribe", status_code=204)
async def subscribe(request: Request, body: SubscriptionRequest) -> Response:
    """Register a pipeline subscription. Duplicates are accepted as no-ops."""
    key = SubscriptionKey(body.namespace_id, body.pipeline_id, body.pipeline_subscription_id)
    _get_harness(request).subscribe(key, body.pipeline_subscription_params)
    return Response(status_code=204)


@router.delete("/subscribe", status_code=201)
async def unsubscribe(request: Request, body: UnsubscriptionRequest) -> Response:
    """Remove a pipeline subscription. Unknown subscriptions are not an error."""
    key = SubscriptionKey(body.namespace_id, body.pipeline_id, body.pipeline_subscription_id)
    _get_harness(request).unsubscribe(key)
    return Response(status_code=201)


@router.post("/shutdown", status_code=204)
async def shutdown(request: Request) -> Response:
    """Begin graceful shutdown; the response is sent before draining starts."""
    _get_harness(request).request_shutdown()
    return Response(status_code=204)


@router.post("/external-event", status_code=204)
async def external_event(request: Request, body: ExternalEventRequest) -> Response:
    """Hand a forwarded external request to the event source."""
    harness = _get_harness(request)
    if not harness.accepting_firings:
        raise ExtensionError("Extension is not accepting events yet", status_code=503)
    await harness.source.external_event(body.headers, body.body)
    return Response(status_code=204)
