"""Exception hierarchy for the gateway.

Every failure is scoped to the connection that triggered it. The ``status``
attribute is the HTTP status the protocol handler answers with.
"""
from __future__ import annotations


class HlsTubeError(Exception):
    """Base class for all gateway failures."""

    status: int = 500
    reason: str = "Internal Server Error"


class BadRequestError(HlsTubeError):
    """The request line could not be parsed."""

    status = 400
    reason = "Bad Request"


# Upstream


class UpstreamError(HlsTubeError):
    """An upstream YouTube endpoint failed or answered with something unusable."""

    status = 502
    reason = "Bad Gateway"


class InvalidRequestError(UpstreamError):
    """Upstream rejected the request, e.g. because the video does not exist."""

    status = 404
    reason = "Not Found"


class InvalidResponseError(UpstreamError):
    """Upstream answered with an empty, undecodable or unexpected body."""


# Signature cipher


class SignatureError(HlsTubeError):
    status = 502
    reason = "Bad Gateway"


class SignatureExtractionError(SignatureError):
    """The decryption program could not be extracted from the player script.

    Extraction failures are terminal for a video and stay cached.
    """


class PlayerNotFoundError(SignatureExtractionError):
    """The watch page does not reference a player script."""


class DecryptionFunctionNotFoundError(SignatureExtractionError):
    """No call site of the signature function was found."""


class DecryptionFunctionNotParsableError(SignatureExtractionError):
    """The signature function declaration could not be matched."""


class HelperObjectNotFoundError(SignatureExtractionError):
    """The signature function body does not reference a helper object."""


class HelperObjectNotParsableError(SignatureExtractionError):
    """The helper object literal is missing or its braces never balance."""


class DecryptionFailedError(SignatureError):
    """Running the decryption program raised or returned a non-string."""


# Playlist / segment index


class FormatNotFoundError(HlsTubeError):
    """Zero or several descriptors match the requested itag."""

    status = 404
    reason = "Not Found"


class SegmentDataUnavailableError(HlsTubeError):
    """The descriptor lacks the URL or index range needed to read its segments."""

    status = 502
    reason = "Bad Gateway"


class NoSegmentDataError(SegmentDataUnavailableError):
    """The fetched index region does not match the declared range length."""


class SegmentIndexDecodeError(SegmentDataUnavailableError):
    """The index box is truncated or its decoded length differs from its range."""
