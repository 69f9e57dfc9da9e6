"""Query compiler for GraphQL operations.

Turns hand-written operation text into a complete document: fragment spreads
are rewritten and their definitions appended, and ``(@autodeclare)``
signatures are replaced with declarations inferred from the variables.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple

from graphql import DocumentNode, print_ast

from .errors import CompileError
from .fragments import FragmentRegistry
from .variables import VariableTypeInferencer, variable_references

AUTODECLARE_PATTERN = re.compile(r"\(@autodeclare\)|\(@autotype\)")
AUTODECLARE_MARKER = "(@autodeclare)"
OPERATION_PATTERN = re.compile(r"^\s*(query|mutation|subscription)\b")
HEADER_PATTERN = re.compile(
    r"\s*(?:(query|mutation|subscription)\b\s*([_A-Za-z][_0-9A-Za-z]*)?)?\s*"
)


class OperationParts(NamedTuple):
    """Textual parts of a single operation."""
    keyword: str
    name: str | None
    signature: str | None
    autodeclare: bool
    selection: str


@dataclass
class QueryTemplate:
    """Operation text prepared for repeated compilation."""
    text: str
    keyword: str = "query"

    @property
    def autodeclare(self) -> bool:
        return AUTODECLARE_PATTERN.search(self.text) is not None

    @classmethod
    def from_body(cls, body: str, keyword: str = "query", declare: bool = False) -> "QueryTemplate":
        """Prepare a template from an operation body.

        Bodies that already start with an operation keyword are kept as they
        are. Anything else is prefixed with ``keyword``; with ``declare`` a
        body without its own signature gets an autodeclare signature.
        """
        match = OPERATION_PATTERN.match(body)
        if match:
            return cls(text=body, keyword=match.group(1))

        stripped = body.strip()
        if declare and not stripped.startswith("("):
            if not stripped.startswith("{"):
                stripped = f"{{ {stripped} }}"
            return cls(text=f"{keyword} {AUTODECLARE_MARKER} {stripped} ", keyword=keyword)

        return cls(text=f"{keyword} {body} ", keyword=keyword)

    def parts(self) -> "OperationParts":
        return split_operation(self.text)


def _closing(text: str, start: int, opening: str, closing: str) -> int:
    """Index of the bracket closing the one at ``start``, skipping strings and comments."""
    depth = 0
    i = start
    while i < len(text):
        char = text[i]
        if char == '"':
            i += 1
            while i < len(text) and text[i] != '"':
                i += 2 if text[i] == "\\" else 1
        elif char == "#":
            end = text.find("\n", i)
            i = len(text) if end == -1 else end
        elif char == opening:
            depth += 1
        elif char == closing:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise CompileError(f"Unbalanced {opening!r} at offset {start}")


def split_operation(text: str) -> OperationParts:
    """Split operation text into keyword, name, signature and selection.

    Raises:
        CompileError: If no selection set can be found.
    """
    header = HEADER_PATTERN.match(text)
    keyword = header.group(1) or "query"
    name = header.group(2)
    position = header.end()

    signature = None
    if text.startswith("(", position):
        end = _closing(text, position, "(", ")")
        signature = text[position + 1:end]
        position = end + 1
        while position < len(text) and text[position].isspace():
            position += 1

    autodeclare = signature is not None and AUTODECLARE_PATTERN.fullmatch(f"({signature.strip()})") is not None
    if autodeclare:
        signature = None

    if not text.startswith("{", position):
        raise CompileError(f"Expected a selection set in operation: {text.strip()[:60]!r}")
    end = _closing(text, position, "{", "}")
    return OperationParts(keyword, name, signature, autodeclare, text[position + 1:end])


def operation_name(document: str) -> str | None:
    """Name of a named operation, if the document has one."""
    match = HEADER_PATTERN.match(document)
    return match.group(2) if match else None


class QueryCompiler:
    """Compiles query templates into complete GraphQL documents."""

    def __init__(
        self,
        registry: FragmentRegistry,
        inferencer: VariableTypeInferencer | None = None,
    ):
        self.registry = registry
        self.inferencer = inferencer or VariableTypeInferencer()

    def template(
        self,
        source: "QueryTemplate | DocumentNode | str",
        keyword: str | None = None,
        declare: bool = False,
    ) -> QueryTemplate:
        """Normalize a template, raw text or graphql-core document."""
        if isinstance(source, QueryTemplate):
            return source
        if isinstance(source, DocumentNode):
            source = print_ast(source)
        return QueryTemplate.from_body(source, keyword or "query", declare)

    def compile(
        self,
        template: "QueryTemplate | DocumentNode | str",
        variables: Mapping[str, Any] | None = None,
        keyword: str | None = None,
    ) -> str:
        """Build a GraphQL document.

        Args:
            template: Prepared template, operation text or parsed document
            variables: Variables used to autodeclare the signature
            keyword: Operation keyword for bodies that don't start with one

        Returns:
            The document with fragment definitions appended

        Raises:
            FragmentNotFoundError: If a spread names an unregistered fragment
        """
        template = self.template(template, keyword)
        resolution = self.registry.resolve_spreads(template.text)
        document = resolution.text + "".join(
            "\n" + self.registry.definition(name) for name in resolution.used_fragments
        )

        if template.autodeclare:
            declarations = self.inferencer.declare(variables, variable_references(document))
            if declarations:
                document = AUTODECLARE_PATTERN.sub(lambda _: f"({declarations})", document)
            else:
                document = re.sub(r"\s*(?:\(@autodeclare\)|\(@autotype\))", "", document)

        return document
