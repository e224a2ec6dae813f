"""Error response shape for the HTTP surface.

Domain errors live in :mod:`phase_forge.errors`; every
:class:`~phase_forge.errors.PhaseForgeError` carries its own HTTP status
so the exception handler can map it without string matching.
"""


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
