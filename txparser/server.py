"""
FastAPI application exposing the query facade over HTTP.

Routes:
- POST /subscribe      body {"address": "..."} -> {"subscribed": bool}
- GET  /current        -> {"block": int}
- GET  /transactions   ?address=... -> [transaction, ...]

Run through ``txparser serve``; the app itself holds no scanning state.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .facade import TxParser

logger = logging.getLogger(__name__)


class SubscribeRequest(BaseModel):
    address: str = Field("", description="Address to expose through /transactions")


class SubscribeResponse(BaseModel):
    subscribed: bool = Field(..., description="True on first subscription, False if already subscribed")


class CurrentBlockResponse(BaseModel):
    block: int = Field(..., ge=0, description="Highest block processed by the forward scan")


class TransactionResponse(BaseModel):
    """One transaction as filed under the queried address."""

    model_config = {"populate_by_name": True}

    hash: str
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    value: str = Field(..., description="Base-10 amount")
    block: int
    inbound: bool = Field(..., description="True when the queried address is the receiver")


def create_app(parser: TxParser) -> FastAPI:
    """Build the ASGI app around ``parser``."""

    app = FastAPI(title="txparser")

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Any body that does not decode into the request model is a plain 400.
        if any((error.get("loc") or ("",))[0] == "body" for error in exc.errors()):
            return JSONResponse(status_code=400, content={"detail": "invalid JSON body"})
        return await request_validation_exception_handler(request, exc)

    @app.post("/subscribe", response_model=SubscribeResponse)
    def subscribe(body: SubscribeRequest) -> SubscribeResponse:
        address = body.address
        if not address:
            raise HTTPException(status_code=400, detail="missing address")
        subscribed = parser.subscribe(address)
        logger.info("subscribe %s -> %s", address, subscribed)
        return SubscribeResponse(subscribed=subscribed)

    @app.get("/current", response_model=CurrentBlockResponse)
    def current_block() -> CurrentBlockResponse:
        return CurrentBlockResponse(block=parser.get_current_block())

    @app.get(
        "/transactions",
        response_model=list[TransactionResponse],
        response_model_by_alias=True,
    )
    def transactions(address: str = Query(default="")) -> list[TransactionResponse]:
        if not address:
            raise HTTPException(status_code=400, detail="missing address")
        return [TransactionResponse(**record.to_dict()) for record in parser.get_transactions(address)]

    return app


__all__ = ["create_app"]
