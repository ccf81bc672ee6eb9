from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

from fastapi import Body, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect  # type: ignore[import-not-found]
from fastapi.middleware.cors import CORSMiddleware  # type: ignore[import-not-found]

from signal_desk import PaperOrderManager, PerSymbolDecisionPipeline, parse_strategy
from signal_desk.config import settings_from_env

from .models import HealthResponse, HistoryResponse, PnlObservation, SignalResponse

logger = logging.getLogger("signal_desk.ingress")


def _list_env(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


def _resolve_strategy(strategy: str) -> str:
    try:
        return parse_strategy(strategy).value
    except ValueError:
        logger.warning("Signal posted for unknown strategy", extra={"strategy": strategy})
        raise HTTPException(status_code=404, detail=f"Unknown strategy: {strategy}") from None


def create_app(pipeline: PerSymbolDecisionPipeline | None = None) -> FastAPI:
    """Build the ingress app around ``pipeline``.

    Without a pipeline the app runs against a :class:`PaperOrderManager` with
    settings read from the environment, e.g.
    ``uvicorn webserver.app:create_app --factory``. While the app is running
    the pipeline's aggregate PnL is polled in the background.
    """
    if pipeline is None:
        pipeline = PerSymbolDecisionPipeline(
            PaperOrderManager(), settings_from_env(), logger=logging.getLogger("signal_desk")
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        interval = pipeline.settings.pnl_poll_interval_seconds
        poller = asyncio.create_task(pipeline.poll_pnl(interval)) if interval > 0 else None
        try:
            yield
        finally:
            if poller is not None:
                poller.cancel()
                try:
                    await poller
                except asyncio.CancelledError:
                    logger.info("PnL poller stopped")

    app = FastAPI(title="Signal Desk", version="1.0.0", lifespan=lifespan)
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_list_env("DESK_ALLOWED_ORIGINS", "http://localhost:9093,http://127.0.0.1:9093"),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next: Callable[[Request], Awaitable]):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        settings = pipeline.settings
        positions = pipeline.order_manager.active_positions
        return HealthResponse(
            smart_mode=settings.smart_mode,
            auto_mode=settings.auto_mode,
            symbols=sorted(pipeline.symbols),
            positions={symbol: position.side.value for symbol, position in positions.items()},
            last_total_pnl=pipeline.last_total_pnl,
        )

    @app.post("/signals/{strategy}", response_model=SignalResponse)
    async def submit_signal(strategy: str, payload: Dict[str, Any] = Body(...)) -> SignalResponse:
        kind = _resolve_strategy(strategy)
        outcome = await pipeline.handle(kind, payload)
        response = SignalResponse.from_outcome(outcome)
        if not response.accepted:
            logger.info("Signal not accepted", extra={"strategy": kind})
        return response

    @app.get("/symbols/{symbol}/history", response_model=HistoryResponse)
    async def symbol_history(symbol: str) -> HistoryResponse:
        history = pipeline.history_for(symbol)
        if history is None:
            raise HTTPException(status_code=404, detail="No signals seen for symbol")
        return HistoryResponse.from_history(history)

    @app.post("/pnl")
    async def observe_pnl(observation: PnlObservation) -> Dict[str, Any]:
        pipeline.observe_pnl(observation.total)
        return {"status": "ok", "total": observation.total}

    @app.websocket("/ws/signals/{strategy}")
    async def signal_stream(websocket: WebSocket, strategy: str) -> None:
        await websocket.accept()
        try:
            kind = parse_strategy(strategy).value
        except ValueError:
            await websocket.send_json({"event": "error", "error": f"Unknown strategy: {strategy}"})
            await websocket.close()
            return

        client = websocket.client.host if websocket.client else "unknown"
        logger.info("Signal stream connected", extra={"strategy": kind, "client": client})
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    await websocket.send_json({"event": "error", "error": "Invalid JSON"})
                    continue
                outcome = await pipeline.handle(kind, message)
                await websocket.send_json(
                    {"event": "outcome", **SignalResponse.from_outcome(outcome).model_dump(mode="json")}
                )
        except WebSocketDisconnect:
            logger.info("Signal stream disconnected", extra={"strategy": kind, "client": client})

    return app

