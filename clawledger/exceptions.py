"""
Exception hierarchy for the ingestion pipeline.
"""

from typing import Optional

from clawledger.db.models import ChainTag


class ClawLedgerError(Exception):
    """Base exception carrying the chain it happened on."""
    def __init__(self, message: str, chain: Optional[ChainTag] = None, code: Optional[str] = None):
        self.message = message
        self.chain = chain
        self.code = code
        prefix = f"[{chain.value}] " if chain else ""
        super().__init__(f"{prefix}{message}")


class AdapterError(ClawLedgerError):
    """Raised when a raw chain payload cannot become a canonical trade."""
    pass


class UnrecognizedEvent(AdapterError):
    """Payload is well-formed but is not a supported swap."""
    pass


class MalformedEvent(AdapterError):
    """Payload fails structural validation."""
    pass


class InvalidSignature(ClawLedgerError):
    """Webhook delivery failed signature verification."""
    pass


class InvalidAddress(ClawLedgerError):
    """Address does not match the chain's format."""
    pass


class RegistrationError(ClawLedgerError):
    """Agent or wallet registration was refused."""
    pass


class UpstreamError(ClawLedgerError):
    """An upstream API or RPC request failed."""
    pass


class RateLimitError(UpstreamError):
    """Raised when an upstream rate limit is hit."""
    pass
