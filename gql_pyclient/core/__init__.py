"""Core modules for compiling, sending and merging GraphQL operations."""

from .client import GraphQLClient, PreparedQuery
from .compiler import OperationParts, QueryCompiler, QueryTemplate, split_operation
from .errors import (
    CompileError,
    EmptyCommitError,
    FragmentError,
    FragmentNotFoundError,
    GraphQLClientError,
    GraphQLError,
    MergeError,
    MissingVariableError,
    NoURLError,
    TransportError,
)
from .executor import GraphQLExecutor, GraphQLRequest, RequestExecutor
from .fragments import FragmentDefinition, FragmentRegistry
from .merge import BatchMerger, MergeEntry
from .options import ClientOptions
from .variables import VariableSpec, VariableTypeInferencer, clean_variables

__all__ = [
    # Client
    "ClientOptions",
    "GraphQLClient",
    "PreparedQuery",
    # Fragments
    "FragmentDefinition",
    "FragmentRegistry",
    # Variables
    "VariableSpec",
    "VariableTypeInferencer",
    "clean_variables",
    # Compiler
    "OperationParts",
    "QueryCompiler",
    "QueryTemplate",
    "split_operation",
    # Merging
    "BatchMerger",
    "MergeEntry",
    # Executor
    "GraphQLExecutor",
    "GraphQLRequest",
    "RequestExecutor",
    # Errors
    "CompileError",
    "EmptyCommitError",
    "FragmentError",
    "FragmentNotFoundError",
    "GraphQLClientError",
    "GraphQLError",
    "MergeError",
    "MissingVariableError",
    "NoURLError",
    "TransportError",
]
