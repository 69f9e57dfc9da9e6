"""Variable type inference for autodeclared operations.

An operation signature written as ``(@autodeclare)`` is replaced with
declarations derived from the variables passed at call time. Keys may carry
a modifier after ``!``:

    name                  inferred from the value ($name: String!)
    name!                 inferred from the value, the ID heuristic is skipped
    name!CustomType       $name: CustomType!
    name![ExplicitType]   $name: [ExplicitType]!
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

TYPE_MODIFIER = "!"
VARIABLE_PATTERN = re.compile(r"\$([_A-Za-z][_0-9A-Za-z]*)")


@dataclass(frozen=True)
class VariableSpec:
    """A variable name with the modifiers parsed from its key."""
    name: str
    explicit_type: str | None = None
    forced_non_null: bool = False

    @classmethod
    def parse(cls, key: str) -> "VariableSpec":
        name, modifier, explicit_type = key.partition(TYPE_MODIFIER)
        return cls(
            name=name,
            explicit_type=explicit_type or None,
            forced_non_null=bool(modifier),
        )


def variable_references(text: str) -> list[str]:
    """Names of the ``$variables`` used in a text, in order, without repeats."""
    return list(dict.fromkeys(VARIABLE_PATTERN.findall(text)))


def clean_variables(variables: Mapping[str, Any] | None) -> dict[str, Any]:
    """Strip type modifiers from variable keys."""
    return {VariableSpec.parse(key).name: value for key, value in (variables or {}).items()}


def looks_like_id(name: str) -> bool:
    return name == "id" or name.endswith(("Id", "ID"))


class VariableTypeInferencer:
    """Builds ``$name: Type`` declarations from runtime variable values."""

    def scalar_type(self, value: Any) -> str | None:
        """GraphQL scalar for a Python value, or None if there is none."""
        if isinstance(value, bool):
            return "Boolean"
        if isinstance(value, int):
            return "Int"
        if isinstance(value, float):
            return "Int" if value.is_integer() else "Float"
        if isinstance(value, str):
            return "String"
        return None

    def infer(self, spec: VariableSpec, value: Any) -> str | None:
        """Full declared type for one variable, or None if it can't be inferred."""
        if spec.explicit_type:
            if spec.explicit_type.endswith(TYPE_MODIFIER):
                return spec.explicit_type
            return spec.explicit_type + TYPE_MODIFIER

        if not spec.forced_non_null and looks_like_id(spec.name):
            return "ID!"

        if isinstance(value, (list, tuple)):
            element_type = self.scalar_type(value[0]) if value else None
            return f"[{element_type}!]!" if element_type else None

        scalar = self.scalar_type(value)
        return f"{scalar}!" if scalar else None

    def declarations(
        self,
        variables: Mapping[str, Any] | None,
        references: Iterable[str] = (),
    ) -> list[str]:
        """Declarations for the supplied variables, then for referenced names.

        Referenced names without a supplied value are declared only when the
        ID heuristic applies to them.
        """
        declared: dict[str, str] = {}
        for key, value in (variables or {}).items():
            spec = VariableSpec.parse(key)
            if spec.name in declared:
                continue
            type_name = self.infer(spec, value)
            if type_name is None:
                logger.debug("Cannot infer a type for $%s, leaving it undeclared", spec.name)
                continue
            declared[spec.name] = type_name

        for name in references:
            if name in declared:
                continue
            if looks_like_id(name):
                declared[name] = "ID!"
            else:
                logger.debug("No value supplied for $%s, leaving it undeclared", name)

        return [f"${name}: {type_name}" for name, type_name in declared.items()]

    def declare(self, variables: Mapping[str, Any] | None, references: Iterable[str] = ()) -> str:
        """Declarations joined into a signature list."""
        return ", ".join(self.declarations(variables, references))
