import logging

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse

import db
from config import settings
from gateway.services.gateway import Gateway
from gateway.types.envelope_contract import GatewayRequest

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI()


def get_gateway() -> Gateway:
    return Gateway.default()


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


# --------------------------------------------
# Action dispatch
# --------------------------------------------
@app.post("/v1/gateway")
async def gateway_action(body: GatewayRequest, gateway: Gateway = Depends(get_gateway)):
    if body.action == "send":
        return await gateway.send(body.message)
    if body.action == "queue":
        return await gateway.queue(body.message)
    if body.action == "process_queue":
        return await gateway.process_queue()
    if body.action == "get_session":
        return await gateway.get_session(body.user_id, body.channel)
    if body.action == "check_delivery":
        return await gateway.check_delivery(body.message_id)
    return JSONResponse(
        {"success": False, "error": "Unknown action"},
        status_code=status.HTTP_400_BAD_REQUEST,
    )
