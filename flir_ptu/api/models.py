"""
Pydantic models for the HTTP response envelope.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from flir_ptu.api.error_mapper import map_exception


class PTUResponse(BaseModel):
    """
    Response envelope shared by every device endpoint.

    Mirrors the Alpaca envelope so Alpaca-aware clients can read it.
    """
    Value: Any = Field(description="Response value (type varies by endpoint)")
    ClientTransactionID: int = Field(0, description="Client transaction ID (echo from request)")
    ServerTransactionID: int = Field(description="Server transaction ID (auto-incremented)")
    ErrorNumber: int = Field(0, description="Error code (0 = success, non-zero = error)")
    ErrorMessage: str = Field("", description="Error message (empty string if no error)")


def make_response(
    value: Any,
    client_id: int = 0,
    server_id: int = 0,
    error: Optional[Exception] = None
) -> PTUResponse:
    """
    Build a response envelope.

    Args:
        value: Response value (ignored if error is set).
        client_id: Client transaction ID.
        server_id: Server transaction ID.
        error: Exception to report, if any.
    """
    if error is None:
        return PTUResponse(
            Value=value,
            ClientTransactionID=client_id,
            ServerTransactionID=server_id,
        )

    error_number, error_message = map_exception(error)
    return PTUResponse(
        Value=None,
        ClientTransactionID=client_id,
        ServerTransactionID=server_id,
        ErrorNumber=error_number,
        ErrorMessage=error_message,
    )
