"""Client configuration."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ClientOptions(BaseModel):
    """Validated options of a GraphQLClient."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    url: str | None = None
    method: Literal["GET", "POST"] = "POST"
    as_json: bool = True
    headers: dict[str, str] = Field(default_factory=dict)
    fragments: dict[str, Any] = Field(default_factory=dict)
    debug: bool = False
    always_autodeclare: bool = False
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value
