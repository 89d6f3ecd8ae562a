"""FastAPI server: Gmail Pub/Sub push endpoint, watch management and quotation API."""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, Response

from quote_reconciler.context import AppContext, build_context
from quote_reconciler.mail_provider.errors import MailAuthError, MailProviderError
from quote_reconciler.reconciliation.engine import ReconciliationEngine
from quote_reconciler.utils.logger import get_logger, log_context
from quote_reconciler.utils.tracing import init_tracing, shutdown_tracing
from quote_reconciler.webhook.audit_routes import router as audit_router
from quote_reconciler.webhook.listener import NotificationListener
from quote_reconciler.webhook.models import PubSubPushEnvelope
from quote_reconciler.webhook.quotation_routes import router as quotation_router
from quote_reconciler.webhook.watch import WatchManager

logger = get_logger("quote_reconciler.webhook.server")

_ACCEPTED = '{"status":"accepted"}'


def _accepted() -> Response:
    return Response(status_code=202, content=_ACCEPTED, media_type="application/json")


def _attach_context(app: FastAPI, ctx: AppContext) -> None:
    engine = ReconciliationEngine.from_context(ctx)
    app.state.context = ctx
    app.state.engine = engine
    app.state.listener = NotificationListener.from_context(ctx, engine)
    app.state.watch_manager = WatchManager.from_context(ctx)
    # One notification at a time per process; the checkpoint is read and written per batch.
    app.state.notification_lock = asyncio.Lock()
    app.state.background_tasks = set()


def _start_renewal_loop(app: FastAPI) -> None:
    ctx: AppContext = app.state.context
    if not ctx.settings.watch_auto_renew or not ctx.settings.pubsub_topic:
        logger.info(
            "webhook.lifespan.renewal_loop_disabled",
            auto_renew=ctx.settings.watch_auto_renew,
            topic_configured=bool(ctx.settings.pubsub_topic),
        )
        return
    task = asyncio.create_task(app.state.watch_manager.run_renewal_loop())
    app.state.background_tasks.add(task)
    task.add_done_callback(app.state.background_tasks.discard)


async def _shutdown_tasks(app: FastAPI) -> None:
    """Cancel background tasks and wait for them to finish."""
    shutdown_timeout = 10.0
    tasks = list(getattr(app.state, "background_tasks", None) or [])
    for t in tasks:
        t.cancel()
    if not tasks:
        return
    try:
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=shutdown_timeout)
    except asyncio.TimeoutError:
        pending = sum(1 for t in tasks if not t.done())
        logger.warning("webhook.lifespan.shutdown_timeout", timeout=shutdown_timeout, pending=pending)


@asynccontextmanager
async def _lifespan(app: FastAPI, owns_context: bool):
    """Build the context in the server's event loop unless one was passed to create_app."""
    if owns_context:
        init_tracing()
        _attach_context(app, build_context())
    _start_renewal_loop(app)

    yield

    await _shutdown_tasks(app)
    if owns_context:
        await app.state.context.aclose()
        shutdown_tracing()


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Create the FastAPI app. With ``context`` given (tests, CLI), the caller owns and closes it."""
    owns_context = context is None
    app = FastAPI(
        title="Quote Reconciler",
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, owns_context),
    )
    if context is not None:
        _attach_context(app, context)

    app.include_router(quotation_router)
    app.include_router(audit_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook/gmail", response_model=None)
    async def gmail_push(request: Request, token: Optional[str] = None) -> Response | dict[str, Any]:
        """Pub/Sub push endpoint. Always 2xx for deliveries so Pub/Sub stops retrying."""
        ctx: AppContext = request.app.state.context
        expected = (ctx.settings.push_verification_token or "").strip()
        if expected and token != expected:
            logger.warning("webhook.gmail.bad_token")
            raise HTTPException(status_code=403, detail="invalid token")

        try:
            body = await request.json()
            envelope = PubSubPushEnvelope.model_validate(body)
            notification = envelope.decode_notification()
        except Exception as e:
            logger.warning("webhook.gmail.parse_error", error=str(e))
            return _accepted()

        logger.info(
            "webhook.gmail.notification",
            email_address=notification.email_address,
            history_id=notification.history_id,
            pubsub_message_id=envelope.message.message_id,
        )
        listener: NotificationListener = request.app.state.listener
        with log_context(pubsub_message_id=envelope.message.message_id, history_id=notification.history_id):
            try:
                async with request.app.state.notification_lock:
                    result = await listener.handle_notification(notification)
            except Exception as e:
                logger.exception("webhook.gmail.process_error", error=str(e))
                return _accepted()
        return result.summary()

    @app.get("/gmail/status")
    async def gmail_status(request: Request) -> dict[str, Any]:
        ctx: AppContext = request.app.state.context
        token_status = ctx.tokens.status() if ctx.tokens is not None else {
            "has_token": False,
            "expired": True,
            "expires_at": None,
            "can_refresh": False,
        }
        watch_status = await request.app.state.watch_manager.status()
        can_send = token_status["has_token"] and (not token_status["expired"] or token_status["can_refresh"])
        return {
            "token": token_status,
            "watch": watch_status,
            "can_send_email": can_send,
            "can_receive_email": can_send and watch_status["watch_active"],
            "llm_configured": ctx.extractor.configured,
        }

    @app.post("/gmail/watch")
    async def gmail_watch(request: Request) -> dict[str, Any]:
        manager: WatchManager = request.app.state.watch_manager
        try:
            record = await manager.setup()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except MailAuthError as e:
            raise HTTPException(status_code=503, detail=str(e))
        except MailProviderError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {"status": "watching", **record.model_dump(mode="json")}

    @app.post("/gmail/watch/renew")
    async def gmail_watch_renew(request: Request) -> dict[str, Any]:
        manager: WatchManager = request.app.state.watch_manager
        record = await manager.renew()
        if record is None:
            raise HTTPException(status_code=502, detail="watch renewal failed; see audit log")
        return {"status": "renewed", **record.model_dump(mode="json")}

    return app
