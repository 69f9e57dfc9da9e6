"""GraphQL client.

Example:
    client = GraphQLClient(
        "https://example.com/graphql",
        fragments={"user": "on User {name}"},
    )

    fetch_post = client.query("{ post(id: $id) { id title author { ...user } } }")
    data = await fetch_post({"id": 123})

    # Merge two calls into one request
    post = fetch_post.merge("page", {"id": 123})
    comments = fetch_comments.merge("page", {"postId": 123})
    await client.commit("page")
    await post      # {"post": {...}}
    await comments  # {"comments": [...]}
"""

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

from graphql import DocumentNode

from .compiler import QueryCompiler, QueryTemplate, operation_name
from .errors import NoURLError
from .executor import GraphQLExecutor, GraphQLRequest, RequestExecutor
from .fragments import FragmentRegistry
from .merge import AliasGenerator, BatchMerger
from .options import ClientOptions
from .variables import VariableTypeInferencer, clean_variables


class PreparedQuery:
    """A query or mutation prepared for repeated calls.

    Calling it sends the operation right away; ``merge`` holds it back until
    the batch is committed on the client.
    """

    def __init__(self, client: "GraphQLClient", template: QueryTemplate):
        self._client = client
        self.template = template

    @property
    def text(self) -> str:
        return self.template.text

    async def __call__(
        self,
        variables: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._client.execute(self.template, variables, headers=headers)

    async def run(self) -> dict[str, Any]:
        """Send the operation without variables."""
        return await self(None)

    def merge(self, batch_key: str, variables: Mapping[str, Any] | None = None) -> asyncio.Future:
        """Hold the operation back until ``client.commit(batch_key)``."""
        return self._client.merger.merge(batch_key, self.template, variables)

    def __repr__(self) -> str:
        return f"PreparedQuery({self.template.text!r})"


class GraphQLClient:
    """Compiles, sends and batches GraphQL operations for one endpoint.

    Every client owns its own fragments and batches.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        executor: RequestExecutor | None = None,
        transport: Any = None,
        alias_generator: AliasGenerator | None = None,
        on_request_error: Callable[[Exception], Any] | None = None,
        **options: Any,
    ):
        """Initialize the client.

        Args:
            url: GraphQL endpoint URL (can be set later with set_url)
            executor: Replaces the default httpx executor
            transport: httpx transport for the default executor
            alias_generator: Returns the 4-digit codes used to alias merged operations
            on_request_error: Called with transport and GraphQL errors before they are raised
            **options: Remaining ClientOptions fields (method, as_json, headers, ...)
        """
        self.options = ClientOptions(url=url, **options)
        self.registry = FragmentRegistry(self.options.fragments)
        self.compiler = QueryCompiler(self.registry, VariableTypeInferencer())
        self.executor = executor or GraphQLExecutor(
            as_json=self.options.as_json,
            timeout=self.options.timeout,
            debug=self.options.debug,
            transport=transport,
            on_request_error=on_request_error,
        )
        self.merger = BatchMerger(self.compiler, self._dispatch, alias_generator)

    async def close(self):
        close = getattr(self.executor, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "GraphQLClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Configuration

    def get_options(self) -> ClientOptions:
        return self.options

    def get_url(self) -> str | None:
        return self.options.url

    def set_url(self, url: str | None) -> None:
        self.options.url = url

    def headers(self, headers: Mapping[str, str] | None = None) -> dict[str, str]:
        """Add default headers; returns the headers now in effect."""
        if headers:
            self.options.headers = {**self.options.headers, **headers}
        return dict(self.options.headers)

    # Fragments

    def fragment(self, fragments: Mapping[str, Any] | str):
        """Register fragments, or get one definition by its path.

        Examples:
            client.fragment({"auth": {"error": "on Error {messages}"}})
            client.fragment("auth.error")  # 'fragment auth_error on Error {messages}'
        """
        if isinstance(fragments, str):
            return self.registry.get(fragments).lstrip("\n")
        self.registry.register(fragments)
        return self

    def fragments(self) -> dict[str, str]:
        return self.registry.list()

    # Operations

    def query(self, body: str | DocumentNode, *, declare: bool = False) -> PreparedQuery:
        return self._prepare(body, "query", declare)

    def mutate(self, body: str | DocumentNode, *, declare: bool = False) -> PreparedQuery:
        return self._prepare(body, "mutation", declare)

    def _prepare(self, body: str | DocumentNode, keyword: str, declare: bool) -> PreparedQuery:
        declare = declare or self.options.always_autodeclare
        return PreparedQuery(self, self.compiler.template(body, keyword, declare))

    def build_query(
        self,
        query: QueryTemplate | DocumentNode | str,
        variables: Mapping[str, Any] | None = None,
    ) -> str:
        """Compile a document without sending it."""
        return self.compiler.compile(query, variables)

    async def run(
        self,
        query: QueryTemplate | DocumentNode | str,
        variables: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Compile and send a document right away."""
        return await self.execute(query, variables, headers=headers)

    async def execute(
        self,
        template: QueryTemplate | DocumentNode | str,
        variables: Mapping[str, Any] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Compile ``template`` against ``variables`` and send it.

        Raises:
            NoURLError: If no URL is configured
        """
        document = self.compiler.compile(template, variables)
        return await self._send(document, clean_variables(variables), headers)

    async def commit(self, batch_key: str) -> dict[str, list[Any]]:
        """Send every operation merged under ``batch_key`` in a single request."""
        return await self.merger.commit(batch_key)

    async def _dispatch(self, document: str, variables: dict[str, Any]) -> dict[str, Any]:
        return await self._send(document, variables, None)

    async def _send(
        self,
        document: str,
        variables: dict[str, Any],
        headers: Mapping[str, str] | None,
    ) -> dict[str, Any]:
        if not self.options.url:
            raise NoURLError()
        request = GraphQLRequest(
            method=self.options.method,
            url=self.options.url,
            query=document,
            variables=variables,
            headers={**self.options.headers, **(headers or {})},
            operation_name=operation_name(document),
        )
        return await self.executor.execute(request)
