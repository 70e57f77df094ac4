"""
Error taxonomy for the dispatch core.

Where each error is handled:
  MissingCredentialError   — per model, never retried, shown as an error message
  TransientTransportError  — 429/5xx, retried by the transport, then surfaced
  NetworkError             — connection failures, retried, then surfaced
  ProtocolParseError       — malformed stream line, logged and skipped
  ConnectorError           — enrichment connector failure, always swallowed
  GenerationError          — backend-reported failure, ends that model's task
  GenerationCancelled      — cancellation token fired mid-stream
"""

from __future__ import annotations


class OmniChatError(Exception):
    """Base class for all dispatch-core errors."""


class MissingCredentialError(OmniChatError):
    """No user or administrator key is available for a provider."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} API key missing. Please check your settings.")


class UnknownModelError(OmniChatError):
    """Model id is not in the catalog."""

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Unknown model '{model_id}'")


class TransportError(OmniChatError):
    """Base for failures raised by the resilient transport."""


class NetworkError(TransportError):
    """The request never produced a response (DNS, connect, timeout)."""


class HttpError(TransportError):
    """The backend answered with an error status."""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(message or f"HTTP {status}")


class TransientTransportError(HttpError):
    """A retryable status (429 or 5xx) persisted after every retry."""


class ProtocolParseError(OmniChatError):
    """A stream event could not be decoded."""


class ConnectorError(OmniChatError):
    """An enrichment connector failed."""

    def __init__(self, connector: str, message: str):
        self.connector = connector
        super().__init__(f"{connector}: {message}")


class GenerationError(OmniChatError):
    """The backend reported a failure for this generation."""

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class GenerationCancelled(OmniChatError):
    """Generation was stopped through a cancellation token."""
