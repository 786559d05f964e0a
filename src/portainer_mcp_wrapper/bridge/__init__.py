"""
Bridge stdio <-> HTTP/SSE: sous-processus, codec, multiplexeur, transport.
"""

from .codec import Message, decode, encode, is_notification, is_request, is_response
from .multiplexer import SessionMultiplexer
from .process import SubprocessHandle, SubprocessManager, redact_args, validate_launch_args
from .transport import SHARED_PROCESS_KEY, ProcessBinding, TransportBridge

__all__ = [
    "Message",
    "decode",
    "encode",
    "is_notification",
    "is_request",
    "is_response",
    "SessionMultiplexer",
    "SubprocessHandle",
    "SubprocessManager",
    "redact_args",
    "validate_launch_args",
    "SHARED_PROCESS_KEY",
    "ProcessBinding",
    "TransportBridge",
]
