"""Error taxonomy shared by every pipeline stage.

The HTTP layer maps these to status codes; anything not listed here is an
unexpected failure and surfaces as a generic 500.
"""


class RagError(Exception):
    """Base class for pipeline errors."""


class ValidationError(RagError):
    """Client-correctable input problem. No work has been performed."""


class UpstreamUnavailable(RagError):
    """Datastore, embedding service or LLM failed. Fatal for the request."""


class NoCandidates(RagError):
    """Retrieval returned nothing: not enough sources to answer."""


class RerankDegraded(RagError):
    """Re-rank reply was unusable. Never escapes the re-rank stage."""


class PersistenceFailure(RagError):
    """Writing the exchange to the session store failed."""


class DeadlineExceeded(RagError):
    """The per-request time budget ran out."""


class RequestCancelled(RagError):
    """The caller went away while the request was in flight."""
