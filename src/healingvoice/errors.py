"""Error taxonomy and user-facing messages."""

from __future__ import annotations

GENERIC_MESSAGE = "Connection error. Please try again."


class VoiceSessionError(Exception):
    """Base class for errors raised by Healing Voice."""


class ConfigurationError(VoiceSessionError):
    pass


class MicrophonePermissionError(VoiceSessionError, PermissionError):
    pass


class DeviceError(VoiceSessionError):
    pass


class SessionConnectionError(VoiceSessionError, ConnectionError):
    pass


class RemoteError(VoiceSessionError):
    pass


class AuthenticationError(VoiceSessionError):
    pass


class PaymentError(VoiceSessionError):
    pass


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ConfigurationError):
        return str(exc)
    if isinstance(exc, MicrophonePermissionError):
        return (
            "Microphone access was denied. Allow microphone access for this "
            "application and try again."
        )
    if isinstance(exc, DeviceError):
        detail = f" ({exc})" if str(exc) else ""
        return (
            "No usable audio device was found. A working microphone and speaker "
            f"are required{detail}."
        )
    if isinstance(exc, RemoteError) and str(exc):
        return f"Live session error: {exc}"
    return GENERIC_MESSAGE
