"""
Error taxonomy for the Fall Monitor backend
"""


class FallMonitorError(Exception):
    """Base class for all backend errors"""


class UrlValidationError(FallMonitorError, ValueError):
    """Endpoint URL rejected before any network action"""


class ConnectionError(FallMonitorError):
    """Transport failed to open, errored or closed"""


class MaxReconnectAttemptsError(ConnectionError):
    """Automatic reconnection gave up"""

    def __init__(self, attempts: int):
        super().__init__("Maximum reconnection attempts reached")
        self.attempts = attempts


class MessageFormatError(FallMonitorError):
    """Inbound frame could not be turned into a sample"""


class ResourceInitError(FallMonitorError):
    """Audio or haptic device could not be used"""
