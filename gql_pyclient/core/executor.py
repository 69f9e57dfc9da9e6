"""GraphQL executor for sending compiled documents to an endpoint.

Handles HTTP communication, error handling, and response parsing. The
client and the batcher only depend on the RequestExecutor protocol, so the
executor can be replaced (e.g. in tests).
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from .errors import GraphQLError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class GraphQLRequest:
    """A single GraphQL exchange."""
    method: str
    url: str
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    operation_name: str | None = None


@runtime_checkable
class RequestExecutor(Protocol):
    """Protocol for anything that can perform a GraphQL exchange.

    Example:
        class RecordingExecutor:
            def __init__(self):
                self.requests = []

            async def execute(self, request: GraphQLRequest) -> dict:
                self.requests.append(request)
                return {}
    """

    async def execute(self, request: GraphQLRequest) -> dict[str, Any]:
        """Perform the exchange and return the response data."""
        ...


class GraphQLExecutor:
    """Executes GraphQL requests over HTTP with httpx.

    Examples:
        executor = GraphQLExecutor()
        data = await executor.execute(GraphQLRequest("POST", url, "{ me { id } }"))

        # Form-encoded POST bodies instead of JSON
        executor = GraphQLExecutor(as_json=False)

        # Custom transport (e.g. httpx.MockTransport in tests)
        executor = GraphQLExecutor(transport=httpx.MockTransport(handler))
    """

    def __init__(
        self,
        *,
        as_json: bool = True,
        timeout: float = 30.0,
        debug: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
        on_request_error: Callable[[Exception], Any] | None = None,
    ):
        """Initialize the executor.

        Args:
            as_json: Send POST bodies as JSON (otherwise form-encoded)
            timeout: Request timeout in seconds
            debug: Log every request at INFO level
            transport: Optional httpx transport
            on_request_error: Called with the error before it is raised
        """
        self.as_json = as_json
        self.timeout = timeout
        self.debug = debug
        self.on_request_error = on_request_error
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GraphQLExecutor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def execute(self, request: GraphQLRequest) -> dict[str, Any]:
        """Execute a GraphQL request.

        Args:
            request: Method, URL, headers, document and variables

        Returns:
            The 'data' portion of the response

        Raises:
            GraphQLError: If the response contains errors
            TransportError: If the request fails or the status is not 200
        """
        client = await self._get_client()
        method = request.method.upper()
        variables = self._serialize_variables(request.variables)

        logger.log(
            logging.INFO if self.debug else logging.DEBUG,
            "[graphql] %s %s %s %s",
            method, request.url, request.query, variables,
        )

        payload: dict[str, Any] = {"query": request.query, "variables": variables}
        if request.operation_name:
            payload["operationName"] = request.operation_name

        try:
            if method == "GET":
                params = dict(payload, variables=json.dumps(variables))
                response = await client.get(request.url, params=params, headers=request.headers)
            elif self.as_json:
                response = await client.post(request.url, json=payload, headers=request.headers)
            else:
                form = dict(payload, variables=json.dumps(variables))
                response = await client.post(request.url, data=form, headers=request.headers)
        except httpx.HTTPError as exc:
            raise self._report(TransportError(f"Request to {request.url} failed: {exc}")) from exc

        if response.status_code != 200:
            raise self._report(TransportError(
                f"Request to {request.url} failed with status {response.status_code}",
                status_code=response.status_code,
                body=self._body(response),
            ))

        try:
            result = response.json()
        except ValueError as exc:
            raise self._report(TransportError(
                f"Invalid JSON response from {request.url}",
                status_code=response.status_code,
                body=response.text,
            )) from exc

        if not isinstance(result, dict):
            raise self._report(TransportError(
                f"Expected a JSON object from {request.url}, got {type(result).__name__}",
                status_code=response.status_code,
                body=result,
            ))

        if result.get("errors"):
            error_messages = "; ".join(e.get("message", str(e)) for e in result["errors"])
            raise self._report(GraphQLError(f"GraphQL errors: {error_messages}", result["errors"]))

        if "data" in result:
            return result["data"] or {}
        return result

    def _report(self, error: Exception) -> Exception:
        """Pass an error to the on_request_error callback before it is raised."""
        if self.on_request_error is not None:
            self.on_request_error(error)
        return error

    def _body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _serialize_variables(self, variables: dict[str, Any]) -> dict[str, Any]:
        """Serialize variables for the GraphQL request.

        Handles Pydantic models by converting them to dicts.
        """
        result = {}
        for key, value in variables.items():
            if isinstance(value, BaseModel):
                # Convert Pydantic model to dict, using aliases and excluding None
                result[key] = value.model_dump(by_alias=True, exclude_none=True)
            elif isinstance(value, list):
                # Handle lists of models
                result[key] = [
                    v.model_dump(by_alias=True, exclude_none=True) if isinstance(v, BaseModel) else v
                    for v in value
                ]
            else:
                result[key] = value
        return result
