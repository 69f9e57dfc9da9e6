"""Merging independent operations into a single request.

Operations merged under the same batch key are held back until the key is
committed. Each entry gets an alias (``merge1234``) that prefixes its
variables and top-level fields, so that all entries fit in one document:

    query ($merge1234__id: ID!, $merge4321__postId: ID!) {
    merge1234_post:post(id: $merge1234__id) { ... }
    merge4321_commentsOfPost: comments(postId: $merge4321__postId) { ... }
     }

The single response is split by alias and every entry's future is resolved
with the shape a non-merged call would have returned.
"""

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .compiler import QueryCompiler, QueryTemplate
from .errors import EmptyCommitError, MergeError, MissingVariableError
from .fragments import SPREAD_PATTERN
from .variables import VARIABLE_PATTERN, VariableSpec, variable_references

logger = logging.getLogger(__name__)

ALIAS_PREFIX = "merge"

AliasGenerator = Callable[[], str]
Dispatch = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]

NAME = r"[_A-Za-z][_0-9A-Za-z]*"
NAME_PATTERN = re.compile(NAME)
TOP_LEVEL_FIELD_PATTERN = re.compile(rf"({NAME})(?:(\s*:\s*)({NAME}))?")


def random_alias() -> str:
    """Random 4-digit alias code. Collisions are not checked."""
    return f"{random.randrange(10000):04d}"


def _split_declarations(signature: str) -> list[str]:
    """Split an explicit signature on top-level commas."""
    declarations = []
    depth = 0
    current = ""
    for char in signature:
        if char in "[(":
            depth += 1
        elif char in "])":
            depth -= 1
        if char == "," and depth == 0:
            declarations.append(current.strip())
            current = ""
        else:
            current += char
    if current.strip():
        declarations.append(current.strip())
    return declarations


def rename_spreads(text: str, renamed: Mapping[str, str]) -> str:
    """Point spreads of flat fragment names at their renamed copies."""
    def rename(match: re.Match) -> str:
        name = match.group(1)
        if name not in renamed:
            return match.group(0)
        return match.group(0)[: match.start(1) - match.start(0)] + renamed[name]

    return SPREAD_PATTERN.sub(rename, text)


def alias_top_level_fields(selection: str, alias: str) -> tuple[str, list[str]]:
    """Prefix every top-level field of a selection with ``alias``.

    Returns the rewritten selection and the original response keys.

    Raises:
        MergeError: If the selection spreads a fragment at the top level.
    """
    out = []
    keys = []
    depth = 0
    i = 0
    while i < len(selection):
        char = selection[i]
        if char == '"':
            end = i + 1
            while end < len(selection) and selection[end] != '"':
                end += 2 if selection[end] == "\\" else 1
            out.append(selection[i:end + 1])
            i = end + 1
            continue
        if char == "#":
            end = selection.find("\n", i)
            end = len(selection) if end == -1 else end
            out.append(selection[i:end])
            i = end
            continue
        if char in "{(":
            depth += 1
        elif char in "})":
            depth -= 1
        elif depth == 0 and selection.startswith("...", i):
            raise MergeError("Top-level fragment spreads cannot be merged")
        elif depth == 0 and char == "@":
            directive = NAME_PATTERN.match(selection, i + 1)
            end = directive.end() if directive else i + 1
            out.append(selection[i:end])
            i = end
            continue
        elif depth == 0 and (char.isalpha() or char == "_"):
            match = TOP_LEVEL_FIELD_PATTERN.match(selection, i)
            response_key, separator, field_name = match.groups()
            if separator:
                out.append(f"{alias}_{response_key}{separator}{field_name}")
            else:
                out.append(f"{alias}_{response_key}:{response_key}")
            keys.append(response_key)
            i = match.end()
            continue
        out.append(char)
        i += 1
    return "".join(out), keys


@dataclass
class MergeEntry:
    """One operation waiting for its batch to be committed."""
    batch_key: str
    alias: str
    keyword: str
    declarations: list[str]
    selection: str
    variables: dict[str, Any]
    fields: list[tuple[str, str]]
    fragments: dict[str, str]
    referenced: list[str]
    supplied: set[str]
    result: asyncio.Future = field(repr=False)

    def check_variables(self) -> None:
        for name in self.referenced:
            if name not in self.supplied:
                raise MissingVariableError(name, self.batch_key)


class BatchMerger:
    """Accumulates merged operations per batch key and commits them."""

    def __init__(
        self,
        compiler: QueryCompiler,
        dispatch: Dispatch,
        alias_generator: AliasGenerator | None = None,
    ):
        self.compiler = compiler
        self._dispatch = dispatch
        self._alias_generator = alias_generator or random_alias
        self._batches: dict[str, list[MergeEntry]] = {}

    def pending(self, batch_key: str) -> int:
        """Number of entries waiting under a batch key."""
        return len(self._batches.get(batch_key, []))

    def merge(
        self,
        batch_key: str,
        template: QueryTemplate | str,
        variables: Mapping[str, Any] | None = None,
    ) -> asyncio.Future:
        """Hold an operation back until ``batch_key`` is committed.

        Must be called while an event loop is running; no request is sent.

        Returns:
            A future resolved with ``{field: value}`` once the batch is committed
        """
        variables = dict(variables or {})
        alias = f"{ALIAS_PREFIX}{self._alias_generator()}"
        parts = self.compiler.template(template).parts()

        def prefix(match: re.Match) -> str:
            return f"${alias}__{match.group(1)}"

        resolution = self.compiler.registry.resolve_spreads(parts.selection)
        definitions = {
            name: self.compiler.registry.definition(name)
            for name in resolution.used_fragments
        }
        referenced = variable_references(resolution.text + "".join(definitions.values()))

        # Fragments using variables, directly or through a spread, get a copy per entry
        renamed: dict[str, str] = {}
        for name, definition in definitions.items():
            spreads = {match.group(1) for match in SPREAD_PATTERN.finditer(definition)}
            if variable_references(definition) or spreads & renamed.keys():
                renamed[name] = f"{alias}_{name}"

        fragments = {}
        for name, definition in definitions.items():
            if name not in renamed:
                fragments[name] = definition
                continue
            definition = VARIABLE_PATTERN.sub(prefix, rename_spreads(definition, renamed))
            fragments[renamed[name]] = definition.replace(
                f"fragment {name} ", f"fragment {renamed[name]} ", 1
            )

        if parts.signature is not None:
            declarations = _split_declarations(parts.signature)
        else:
            declarations = self.compiler.inferencer.declarations(variables, referenced)

        selection = rename_spreads(resolution.text.strip(), renamed)
        selection, keys = alias_top_level_fields(VARIABLE_PATTERN.sub(prefix, selection), alias)
        supplied = {VariableSpec.parse(key).name: value for key, value in variables.items()}

        entry = MergeEntry(
            batch_key=batch_key,
            alias=alias,
            keyword=parts.keyword,
            declarations=[VARIABLE_PATTERN.sub(prefix, d) for d in declarations],
            selection=selection,
            variables={f"{alias}__{name}": value for name, value in supplied.items()},
            fields=[(f"{alias}_{key}", key) for key in keys],
            fragments=fragments,
            referenced=referenced,
            supplied=set(supplied),
            result=asyncio.get_running_loop().create_future(),
        )
        self._batches.setdefault(batch_key, []).append(entry)
        logger.debug("Merged %s into %s as %s", ", ".join(keys), batch_key, alias)
        return entry.result

    def build_document(self, keyword: str, entries: list[MergeEntry]) -> str:
        """Combine entries of the same operation type into one document."""
        declarations = list(dict.fromkeys(d for entry in entries for d in entry.declarations))
        header = f"{keyword} ({', '.join(declarations)}) {{" if declarations else f"{keyword} {{"
        body = "\n".join(entry.selection for entry in entries)
        fragments: dict[str, str] = {}
        for entry in entries:
            for name, definition in entry.fragments.items():
                fragments.setdefault(name, definition)
        return f"{header}\n{body}\n }}" + "".join("\n" + d for d in fragments.values())

    async def commit(self, batch_key: str) -> dict[str, list[Any]]:
        """Send every operation merged under ``batch_key`` in one request.

        Each entry's future is resolved with its own part of the response;
        the return value collects the values of every field name across
        entries, in merge order.

        Raises:
            EmptyCommitError: If nothing is merged under ``batch_key``
            MissingVariableError: If an entry uses a variable it has no value for
        """
        entries = self._batches.pop(batch_key, None)
        if not entries:
            raise EmptyCommitError(batch_key)

        aggregate: dict[str, list[Any]] = {}
        try:
            for entry in entries:
                entry.check_variables()

            groups: dict[str, list[MergeEntry]] = {}
            for entry in entries:
                groups.setdefault(entry.keyword, []).append(entry)

            for keyword, group in groups.items():
                document = self.build_document(keyword, group)
                variables: dict[str, Any] = {}
                for entry in group:
                    variables.update(entry.variables)
                logger.debug("Committing %d %s entries of %s", len(group), keyword, batch_key)
                data = await self._dispatch(document, variables)
                self._settle(group, data or {}, aggregate)
        except asyncio.CancelledError:
            for entry in entries:
                if not entry.result.done():
                    entry.result.cancel()
            raise
        except Exception as exc:
            for entry in entries:
                if not entry.result.done():
                    entry.result.set_exception(exc)
            raise

        return aggregate

    def _settle(
        self,
        entries: list[MergeEntry],
        data: Mapping[str, Any],
        aggregate: dict[str, list[Any]],
    ) -> None:
        claimed = set()
        for entry in entries:
            response = {}
            for response_key, key in entry.fields:
                value = data.get(response_key)
                response[key] = value
                aggregate.setdefault(key, []).append(value)
                claimed.add(response_key)
            if not entry.result.done():
                entry.result.set_result(response)

        for response_key in data:
            if response_key not in claimed:
                logger.warning("Response key %s does not belong to any merged entry", response_key)
