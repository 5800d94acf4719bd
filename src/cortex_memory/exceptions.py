"""Error taxonomy shared by the gateways, the services and the HTTP layer.

Enhancement failures (embedding, linking) are absorbed by the services;
correctness-critical failures propagate and are mapped to HTTP status codes
by the handlers registered in ``web.app``.
"""


class CortexMemoryError(Exception):
    """Base class for all service errors."""

    status_code = 500


class EmbeddingUnavailableError(CortexMemoryError):
    """The embedding provider failed or returned no vector."""

    status_code = 503


class IndexUnavailableError(CortexMemoryError):
    """The vector index is not provisioned or cannot be reached."""

    status_code = 503


class MemoryNotFoundError(CortexMemoryError):
    """The memory does not exist for the requesting user."""

    status_code = 404

    def __init__(self, memory_id: str):
        self.memory_id = memory_id
        super().__init__(f"Memory not found: {memory_id}")


class ValidationFailureError(CortexMemoryError):
    """A request is missing required fields or carries invalid values."""

    status_code = 400


class UpstreamFailureError(CortexMemoryError):
    """An external collaborator failed unexpectedly."""

    status_code = 500
