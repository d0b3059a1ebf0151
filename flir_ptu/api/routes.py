"""
PTU device endpoints.

Endpoints that talk to the unit are plain ``def`` so FastAPI runs them in
its threadpool; an axis reset blocks for the whole homing cycle.
"""

import logging

from fastapi import APIRouter, Depends, Form, Query, Request

from flir_ptu.api.app import get_next_transaction_id
from flir_ptu.api.models import PTUResponse, make_response
from flir_ptu.protocol.commands import Axis, ControlMode, PowerMode
from flir_ptu.protocol.logger import get_protocol_logger
from flir_ptu.ptu.controller import PTUController
from flir_ptu.utils.exceptions import InvalidValueError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ptu/0", tags=["ptu"])

_POWER_MODE_NAMES = {
    "OFF": PowerMode.OFF,
    "LOW": PowerMode.LOW,
    "REG": PowerMode.REGULAR,
    "REGULAR": PowerMode.REGULAR,
    "HIGH": PowerMode.HIGH,
}

_CONTROL_MODE_NAMES = {
    "COL": ControlMode.OPEN_LOOP,
    "OPEN_LOOP": ControlMode.OPEN_LOOP,
    "CEC": ControlMode.ENCODER,
    "ENCODER": ControlMode.ENCODER,
}


def get_ptu(request: Request) -> PTUController:
    """Dependency to get the PTU controller from app.state."""
    ptu = getattr(request.app.state, "ptu", None)
    if ptu is None:
        raise RuntimeError("PTU controller not initialized")
    return ptu


def get_client_id(ClientTransactionID: int = Query(0)) -> int:
    """Extract client transaction ID from query params."""
    return ClientTransactionID


def get_client_id_form(ClientTransactionID: int = Form(0)) -> int:
    """Extract client transaction ID from form data."""
    return ClientTransactionID


def parse_axis(value: str) -> Axis:
    try:
        return Axis.parse(value)
    except ValueError as e:
        raise InvalidValueError(str(e))


def parse_power_mode(value: str) -> PowerMode:
    mode = _POWER_MODE_NAMES.get(value.strip().upper())
    if mode is None:
        raise InvalidValueError(f"Unknown power mode {value!r}. Must be OFF, LOW, REG or HIGH")
    return mode


def parse_control_mode(value: str) -> ControlMode:
    mode = _CONTROL_MODE_NAMES.get(value.strip().upper())
    if mode is None:
        raise InvalidValueError(f"Unknown control mode {value!r}. Must be COL or CEC")
    return mode


@router.get("/health")
async def health_check():
    """Simple health check endpoint (no dependencies)."""
    return {"status": "ok", "message": "Server is running"}


# GET endpoints

@router.get("/connected", response_model=PTUResponse)
async def get_connected(
    client_id: int = Depends(get_client_id),
    ptu: PTUController = Depends(get_ptu)
):
    """Get connection status."""
    value = ptu.connected
    logger.debug(f"GET /connected -> {value}")
    return make_response(value, client_id, get_next_transaction_id())


@router.get("/status", response_model=PTUResponse)
async def get_status(
    client_id: int = Depends(get_client_id),
    ptu: PTUController = Depends(get_ptu)
):
    """Snapshot of position, telemetry, settings and indicators."""
    return make_response(ptu.status().to_dict(), client_id, get_next_transaction_id())


@router.get("/position", response_model=PTUResponse)
async def get_position(
    client_id: int = Depends(get_client_id),
    ptu: PTUController = Depends(get_ptu)
):
    """Last polled position in steps (null until the first successful poll)."""
    try:
        sample = ptu.get_position()
        value = {"pan": sample.pan, "tilt": sample.tilt} if sample else None
        logger.debug(f"GET /position -> {value}")
        return make_response(value, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /position: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.get("/telemetry", response_model=PTUResponse)
async def get_telemetry(
    client_id: int = Depends(get_client_id),
    ptu: PTUController = Depends(get_ptu)
):
    """Last polled voltage and temperatures."""
    try:
        sample = ptu.get_telemetry()
        value = None
        if sample:
            value = {
                "voltage": sample.voltage,
                "temp_body": sample.temp_body,
                "temp_pan": sample.temp_pan,
                "temp_tilt": sample.temp_tilt,
            }
        return make_response(value, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /telemetry: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.get("/protocollog")
async def get_protocol_log(limit: int = Query(100, ge=1, le=1000)):
    """Recent TX/RX/ERR records and counters."""
    protocol_logger = get_protocol_logger()
    return {
        "messages": protocol_logger.get_messages(limit=limit),
        "stats": protocol_logger.get_stats(),
    }


# PUT endpoints

@router.put("/connected", response_model=PTUResponse)
def put_connected(
    Connected: bool = Form(...),
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Connect (open + handshake) or disconnect."""
    try:
        if Connected:
            ptu.connect()
            logger.info("PTU connected via API")
        else:
            ptu.disconnect()
            logger.info("PTU disconnected via API")
        return make_response(None, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /connected PUT: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.put("/refresh", response_model=PTUResponse)
def put_refresh(
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Run one status poll now."""
    try:
        result = ptu.refresh()
        value = {
            "ok": result.ok,
            "failures": {text: outcome.describe() for text, outcome in result.failures()},
        }
        return make_response(value, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /refresh: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.put("/holdpower", response_model=PTUResponse)
def put_hold_power(
    Axis: str = Form(...),
    Mode: str = Form(...),
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Set hold power (OFF, LOW, REG) for pan or tilt."""
    try:
        ptu.set_hold_power(parse_axis(Axis), parse_power_mode(Mode))
        return make_response(None, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /holdpower: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.put("/movepower", response_model=PTUResponse)
def put_move_power(
    Axis: str = Form(...),
    Mode: str = Form(...),
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Set move power (OFF, LOW, REG, HIGH) for pan or tilt."""
    try:
        ptu.set_move_power(parse_axis(Axis), parse_power_mode(Mode))
        return make_response(None, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /movepower: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.put("/controlmode", response_model=PTUResponse)
def put_control_mode(
    Mode: str = Form(...),
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Switch between open-loop (COL) and encoder-corrected (CEC) control."""
    try:
        ptu.set_control_mode(parse_control_mode(Mode))
        return make_response(None, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /controlmode: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)


@router.put("/resetaxis", response_model=PTUResponse)
def put_reset_axis(
    Axis: str = Form(...),
    client_id: int = Depends(get_client_id_form),
    ptu: PTUController = Depends(get_ptu)
):
    """Home pan, tilt or both axes. Blocks until the unit acknowledges."""
    try:
        ptu.reset_axis(parse_axis(Axis))
        return make_response(None, client_id, get_next_transaction_id())
    except Exception as e:
        logger.error(f"Error in /resetaxis: {e}")
        return make_response(None, client_id, get_next_transaction_id(), e)
