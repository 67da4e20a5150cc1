"""Request-level error taxonomy.

Every error raised before the response stream opens carries the HTTP status
the server should answer with. Once streaming has begun, failures are
reported in-band instead and these statuses no longer apply.
"""


class LibraryError(Exception):
    """Base class for errors that map to a synchronous HTTP response."""

    status: int = 500


class BadRequest(LibraryError):
    status = 400


class NotFound(LibraryError):
    status = 404


class UpstreamError(LibraryError):
    """An external service (embeddings, archive, generation) failed."""

    status = 500
