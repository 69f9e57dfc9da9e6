"""Fragment registry.

Stores namespaced fragment bodies and resolves spread references in query
text. Fragments are registered as a nested mapping:

    registry = FragmentRegistry()
    registry.register({
        "user": "on User {name}",
        "auth": {"user": "on User {token, ...user}"},
    })

A fragment is addressed by its dotted path (``auth.user``) and emitted under
its flat name (``auth_user``).
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, NamedTuple

from .errors import FragmentError, FragmentNotFoundError

logger = logging.getLogger(__name__)

FRAGMENT_SEPARATOR = "."

# `...path` or `... path`; `... on Type` is an inline fragment, not a spread
SPREAD_PATTERN = re.compile(
    r"\.\.\.\s*(?!on\b)([_A-Za-z][_0-9A-Za-z]*(?:\.[_A-Za-z][_0-9A-Za-z]*)*)"
)
TYPE_CONDITION_PATTERN = re.compile(r"^\s*on\s+[_A-Za-z]")


def flat_name(path: str) -> str:
    """Convert a dotted fragment path to the name used in documents."""
    return path.replace(FRAGMENT_SEPARATOR, "_")


@dataclass(frozen=True)
class FragmentDefinition:
    """A registered fragment."""
    path: str
    body: str

    @property
    def flat_name(self) -> str:
        return flat_name(self.path)

    @property
    def definition(self) -> str:
        return f"\nfragment {self.flat_name} {self.body}"


class SpreadResolution(NamedTuple):
    """Result of resolving the spreads of a text."""
    text: str
    used_fragments: list[str]


class FragmentRegistry:
    """Registry of fragments owned by a single client."""

    def __init__(self, fragments: Mapping[str, Any] | None = None):
        self._fragments: dict[str, FragmentDefinition] = {}
        if fragments:
            self.register(fragments)

    def __contains__(self, path: str) -> bool:
        return flat_name(path) in self._fragments

    def __len__(self) -> int:
        return len(self._fragments)

    def register(self, fragments: Mapping[str, Any]) -> None:
        """Register a (possibly nested) mapping of fragments.

        Later registrations are merged into the registry; a path that is
        already registered is replaced.

        Raises:
            FragmentError: If a body has no type condition, a value is neither
                a string nor a mapping, or two different paths flatten to the
                same name.
        """
        for path, body in self._flatten(fragments):
            if not TYPE_CONDITION_PATTERN.match(body):
                raise FragmentError(
                    f"Fragment {path} must start with a type condition (on <Type>)"
                )
            fragment = FragmentDefinition(path=path, body=body.strip())
            existing = self._fragments.get(fragment.flat_name)
            if existing is not None and existing.path != path:
                raise FragmentError(
                    f"Fragment {path} collides with {existing.path} "
                    f"(both are named {fragment.flat_name})"
                )
            self._fragments[fragment.flat_name] = fragment
            logger.debug("Registered fragment %s as %s", path, fragment.flat_name)

    def _flatten(self, tree: Mapping[str, Any], prefix: str = "") -> list[tuple[str, str]]:
        """Flatten a nested mapping to (path, body) pairs."""
        flattened = []
        for name, value in tree.items():
            path = f"{prefix}{FRAGMENT_SEPARATOR}{name}" if prefix else name
            if isinstance(value, Mapping):
                flattened.extend(self._flatten(value, path))
            elif isinstance(value, str):
                flattened.append((path, value))
            else:
                raise FragmentError(
                    f"Fragment {path} must be a string or a mapping, "
                    f"got {type(value).__name__}"
                )
        return flattened

    def lookup(self, path: str) -> FragmentDefinition:
        """Get the stored fragment for a dotted path or flat name."""
        fragment = self._fragments.get(flat_name(path))
        if fragment is None:
            raise FragmentNotFoundError(path)
        return fragment

    def get(self, path: str) -> str:
        """Get the full definition text of a fragment."""
        return self.lookup(path).definition

    def definition(self, name: str) -> str:
        """Get a definition with the dotted spreads in its body flattened."""
        fragment = self.lookup(name)

        def flatten_spread(match: re.Match) -> str:
            prefix = match.group(0)[: match.start(1) - match.start(0)]
            return prefix + flat_name(match.group(1))

        return f"\nfragment {fragment.flat_name} {SPREAD_PATTERN.sub(flatten_spread, fragment.body)}"

    def resolve_spreads(self, text: str) -> SpreadResolution:
        """Rewrite spreads in ``text`` and collect every fragment they require.

        Every fragment is listed after the fragments it depends on, otherwise
        in the order it is first seen.

        Raises:
            FragmentNotFoundError: If a spread names an unregistered fragment.
            FragmentError: If a fragment spreads itself, directly or not.
        """
        used: list[str] = []
        self._collect(text, used, visiting=())
        rewritten = SPREAD_PATTERN.sub(lambda m: "... " + flat_name(m.group(1)), text)
        return SpreadResolution(rewritten, used)

    def _collect(self, text: str, used: list[str], visiting: tuple[str, ...]) -> None:
        for match in SPREAD_PATTERN.finditer(text):
            fragment = self.lookup(match.group(1))
            name = fragment.flat_name
            if name in visiting:
                raise FragmentError(f"Recursive fragment usage detected on {fragment.path}.")
            if name in used:
                continue
            self._collect(fragment.body, used, visiting + (name,))
            used.append(name)

    def list(self) -> dict[str, str]:
        """Snapshot of every registered fragment, keyed by flat name."""
        return {name: fragment.definition for name, fragment in self._fragments.items()}
