"""
Uniform responses for channel requests.

Every channel request is answered with a DataResponse body:
- 200 "Events Handled": one item per event produced or note taken
- 200 "Ignored": the request carried nothing to act on
- 400 "Error": the request was malformed
- 500 "Error": a backend failure aborted processing; items already
  committed are listed before the error item
"""

import logging
from typing import Optional, Sequence

from fastapi import Request, status
from fastapi.responses import JSONResponse

from wschannel.events import Channel, Msg, MsgStatus
from wschannel.logging_utils import log_channel_data
from wschannel.metrics import record_channel_outcome
from wschannel.schemas import (
    ContactRegisteredData,
    DataResponse,
    ErrorData,
    EventData,
    InfoData,
    MsgReceiveData,
    StatusData,
)

logger = logging.getLogger(__name__)

EVENTS_HANDLED = "Events Handled"
IGNORED = "Ignored"
ERROR = "Error"


# =============================================================================
# Data Items
# =============================================================================

def msg_receive_data(msg: Msg) -> MsgReceiveData:
    return MsgReceiveData(
        channel_uuid=msg.channel.uuid,
        msg_uuid=msg.uuid,
        text=msg.text,
        urn=msg.urn.identity,
        external_id=msg.external_id,
        received_on=msg.received_on,
        attachments=list(msg.attachments),
    )


def status_data(msg_status: MsgStatus) -> StatusData:
    return StatusData(
        channel_uuid=msg_status.channel_uuid,
        status=msg_status.status.value,
        msg_id=msg_status.msg_id,
        external_id=msg_status.external_id,
    )


def info_data(info: str) -> InfoData:
    return InfoData(info=info)


def contact_registered_data(contact_uuid: str) -> ContactRegisteredData:
    return ContactRegisteredData(contact_uuid=contact_uuid)


# =============================================================================
# Writers
# =============================================================================

def write_data_response(
    request: Request,
    channel: Optional[Channel],
    status_code: int,
    message: str,
    data: Sequence[EventData],
    result: str = "handled",
) -> JSONResponse:
    """Build the response body and attach channel fields to the request log."""
    body = DataResponse(message=message, data=list(data))

    channel_type = channel.channel_type if channel else None
    log_channel_data(
        request,
        channel_uuid=channel.uuid if channel else None,
        channel_type=channel_type,
        result=result,
        events=len(body.data),
    )
    if channel_type:
        record_channel_outcome(channel_type, result)

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


def write_and_log_request_ignored(
    request: Request,
    channel: Optional[Channel],
    details: str,
) -> JSONResponse:
    logger.info(f"Request ignored: {details}")
    return write_data_response(
        request, channel, status.HTTP_200_OK, IGNORED, [info_data(details)], result="ignored",
    )


def write_and_log_request_error(
    request: Request,
    channel: Optional[Channel],
    err: Exception,
) -> JSONResponse:
    logger.warning(f"Request error: {err}")
    return write_data_response(
        request, channel, status.HTTP_400_BAD_REQUEST, ERROR, [ErrorData(error=str(err))], result="error",
    )


def write_and_log_backend_error(
    request: Request,
    channel: Optional[Channel],
    err: Exception,
    committed: Sequence[EventData] = (),
) -> JSONResponse:
    logger.error(f"Backend error after {len(committed)} committed items: {err}")
    return write_data_response(
        request,
        channel,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ERROR,
        [*committed, ErrorData(error=str(err))],
        result="error",
    )
