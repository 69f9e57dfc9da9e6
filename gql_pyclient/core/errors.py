"""Exceptions raised by the compiler, the batcher and the executor."""

from typing import Any


class GraphQLClientError(Exception):
    """Base class for every error raised by gql-pyclient."""


class FragmentError(GraphQLClientError):
    """Raised for invalid fragment registrations or recursive fragments."""


class FragmentNotFoundError(FragmentError):
    """Raised when a spread or lookup names an unregistered fragment."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Fragment {path} not found")


class CompileError(GraphQLClientError):
    """Raised when an operation text cannot be split into its parts."""


class NoURLError(GraphQLClientError):
    """Raised when an operation is executed without a destination URL."""

    def __init__(self):
        super().__init__("No URL configured. Call set_url() or pass url to the client.")


class MergeError(GraphQLClientError):
    """Raised for problems with merged (batched) operations."""


class EmptyCommitError(MergeError):
    """Raised when committing a batch key with no pending entries."""

    def __init__(self, batch_key: str):
        self.batch_key = batch_key
        super().__init__(
            f"You cannot commit the merge {batch_key} without creating it first."
        )


class MissingVariableError(MergeError):
    """Raised at commit time when a merged body uses a variable with no value."""

    def __init__(self, name: str, batch_key: str):
        self.name = name
        self.batch_key = batch_key
        super().__init__(f"Unused variable on merge {batch_key}: ${name}")


class GraphQLError(GraphQLClientError):
    """Exception raised for GraphQL errors."""

    def __init__(self, message: str, errors: list[dict[str, Any]]):
        self.message = message
        self.errors = errors
        super().__init__(message)


class TransportError(GraphQLClientError):
    """Raised for failed HTTP exchanges (non-200 status or connection errors)."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)
