"""Classifying streaming failures into user cancellations and genuine errors."""

from loguru import logger

from relaybot.channels.transport import Transport
from relaybot.providers.backend import ErrorKind, StreamingError
from relaybot.session.manager import Session

CANCELLATION_MARKERS = ("abort", "cancel")
MAX_ERROR_DETAIL = 200

STOPPED_NOTICE = "🛑 Query stopped."


def classify_error(error: BaseException) -> ErrorKind:
    """Decide whether ``error`` is a user cancellation.

    A typed StreamingError kind wins. Untyped failures fall back to a
    case-sensitive search of the message for "abort" or "cancel".
    """
    if isinstance(error, StreamingError) and error.kind is not None:
        return error.kind
    text = str(error)
    if any(marker in text for marker in CANCELLATION_MARKERS):
        return ErrorKind.CANCELLED
    return ErrorKind.ERROR


def format_error(error: BaseException) -> str:
    return f"❌ Error: {str(error)[:MAX_ERROR_DETAIL]}"


async def handle_processing_error(
    transport: Transport,
    session: Session,
    error: BaseException,
) -> ErrorKind:
    """Tell the user how a streaming exchange ended.

    Cancellations already acknowledged elsewhere (interrupt flag set) stay
    silent.
    """
    kind = classify_error(error)
    if kind is ErrorKind.CANCELLED:
        acknowledged = session.consume_interrupt_flag()
        logger.info(f"Session {session.key}: query cancelled (acknowledged={acknowledged})")
        if not acknowledged:
            await transport.reply(STOPPED_NOTICE)
    else:
        await transport.reply(format_error(error))
    return kind
