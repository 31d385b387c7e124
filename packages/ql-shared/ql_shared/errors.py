"""Error taxonomy shared by the QueryLift engine and its collaborators.

Only ``InvalidSyntax``, ``ResourceNotFound``, ``InvalidUpstreamRequest`` and
``PersistenceFailed`` ever reach a caller of the optimization pipeline.
``AuthUnavailable`` and ``OptimizationUnavailable`` are turned into a
degraded result (original query returned unchanged), and the metadata /
plan-probe errors are downgraded to "absent" inside their components.
"""


class QueryLiftError(Exception):
    """Base class for all QueryLift errors."""


class InvalidSyntax(QueryLiftError):
    """The submitted SQL could not be parsed."""


class ResourceNotFound(QueryLiftError):
    """A referenced chat or database connection does not exist."""


class AuthUnavailable(QueryLiftError):
    """The credential exchange with the model provider failed."""


class TransientUpstreamError(QueryLiftError):
    """The model endpoint failed in a way that is worth retrying (5xx, network)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidUpstreamRequest(QueryLiftError):
    """The model endpoint rejected the request (4xx). Not retried."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OptimizationUnavailable(QueryLiftError):
    """The model endpoint stayed unavailable after all retry attempts."""


class MetadataCollectionFailed(QueryLiftError):
    """Catalog introspection for a table failed."""


class PlanProbeFailed(QueryLiftError):
    """EXPLAIN ANALYZE could not be run or its output could not be read."""


class PersistenceFailed(QueryLiftError):
    """The optimization result could not be stored."""


__all__ = [
    "QueryLiftError",
    "InvalidSyntax",
    "ResourceNotFound",
    "AuthUnavailable",
    "TransientUpstreamError",
    "InvalidUpstreamRequest",
    "OptimizationUnavailable",
    "MetadataCollectionFailed",
    "PlanProbeFailed",
    "PersistenceFailed",
]
