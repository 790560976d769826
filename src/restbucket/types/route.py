# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Route descriptors for rate-limited endpoints.

A Route is a method plus a path template such as
``channels/{channel_id}/messages/{message_id}``. Compiling it with concrete
values produces a CompiledRoute, which carries the substituted path and the
values of the "major" parameters the server partitions rate limits by.
Two compiled routes with the same method, template and major values share
rate-limit state until the server assigns them a bucket hash.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote

from ..exceptions import ConfigurationError

MAJOR_PARAMETER_NAMES: tuple[str, ...] = (
    "guild_id",
    "channel_id",
    "webhook_id",
    "interaction_token",
)
"""Path parameters that partition server-side rate limits."""

MAX_MAJOR_VALUE_LENGTH = 30
NO_MAJOR_PARAMETERS = "n/a"


class HttpMethod(Enum):
    """HTTP methods supported by the dispatcher."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


def _parse_template(template: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split a template into path elements and validate placeholder syntax."""
    elements = tuple(part for part in template.strip("/").split("/") if part)
    params: list[str] = []
    for element in elements:
        opening = element.count("{")
        closing = element.count("}")
        if element.startswith("{") and element.endswith("}"):
            if opening != 1 or closing != 1 or len(element) < 3:
                raise ConfigurationError(
                    f"Route element has invalid syntax: {element!r}"
                )
            params.append(element[1:-1])
        elif opening or closing:
            raise ConfigurationError(f"Route element has invalid syntax: {element!r}")
    return elements, tuple(params)


@dataclass(frozen=True)
class Route:
    """
    Immutable route template.

    Attributes:
        method: HTTP method of the endpoint
        template: Path template with ``{name}`` placeholders
        major_parameters: Placeholder names that partition rate limits
        interaction: Interaction routes are exempt from the account-wide budget
    """

    method: HttpMethod
    template: str
    major_parameters: tuple[str, ...] = MAJOR_PARAMETER_NAMES
    interaction: bool = False
    _elements: tuple[str, ...] = field(init=False, repr=False, compare=False)
    _param_names: tuple[str, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.method, str):
            object.__setattr__(self, "method", HttpMethod(self.method.upper()))
        elements, params = _parse_template(self.template)
        object.__setattr__(self, "template", "/".join(elements))
        object.__setattr__(self, "major_parameters", tuple(self.major_parameters))
        object.__setattr__(self, "_elements", elements)
        object.__setattr__(self, "_param_names", params)

    @classmethod
    def get(cls, template: str, **kwargs: object) -> Route:
        return cls(HttpMethod.GET, template, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def post(cls, template: str, **kwargs: object) -> Route:
        return cls(HttpMethod.POST, template, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def put(cls, template: str, **kwargs: object) -> Route:
        return cls(HttpMethod.PUT, template, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def patch(cls, template: str, **kwargs: object) -> Route:
        return cls(HttpMethod.PATCH, template, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def delete(cls, template: str, **kwargs: object) -> Route:
        return cls(HttpMethod.DELETE, template, **kwargs)  # type: ignore[arg-type]

    @property
    def param_names(self) -> tuple[str, ...]:
        """Placeholder names in order of appearance."""
        return self._param_names

    @property
    def param_count(self) -> int:
        return len(self._param_names)

    @property
    def base_key(self) -> str:
        """Key under which the server-assigned bucket hash is cached."""
        return f"{self.method.value} {self.template}"

    def compile(self, *values: object) -> CompiledRoute:
        """
        Substitute positional values into the template.

        Args:
            *values: One value per placeholder, in order of appearance

        Returns:
            CompiledRoute with the encoded path and the major parameter key

        Raises:
            ConfigurationError: If the number of values does not match
        """
        if len(values) != len(self._param_names):
            raise ConfigurationError(
                f"Route {self.base_key} expects {len(self._param_names)} "
                f"argument(s), got {len(values)}"
            )
        if any(value is None for value in values):
            raise ConfigurationError(f"Route {self.base_key} received a None argument")

        major: list[tuple[str, str]] = []
        path: list[str] = []
        index = 0
        for element in self._elements:
            if not element.startswith("{"):
                path.append(element)
                continue
            name = self._param_names[index]
            value = str(values[index])
            index += 1
            if name in self.major_parameters:
                if len(value) > MAX_MAJOR_VALUE_LENGTH:
                    # Long interaction tokens only bloat keys and logs
                    value_key = hashlib.sha1(value.encode("utf-8")).hexdigest()
                else:
                    value_key = value
                major.append((name, value_key))
            path.append(quote(value, safe=""))

        return CompiledRoute(
            route=self,
            path="/".join(path),
            major_parameters=tuple(major),
        )

    def __str__(self) -> str:
        return self.base_key


@dataclass(frozen=True)
class CompiledRoute:
    """
    A route compiled with concrete values.

    Attributes:
        route: The template this was compiled from
        path: Encoded path without leading slash
        major_parameters: (name, value) pairs of the rate-limit-significant values
        query: Encoded ``key=value`` query pieces
    """

    route: Route
    path: str
    major_parameters: tuple[tuple[str, str], ...] = ()
    query: tuple[str, ...] = ()

    @property
    def method(self) -> HttpMethod:
        return self.route.method

    @property
    def major(self) -> str:
        """Major parameter key, ``name=value`` pieces joined by ``:``."""
        if not self.major_parameters:
            return NO_MAJOR_PARAMETERS
        return ":".join(f"{name}={value}" for name, value in self.major_parameters)

    @property
    def identity(self) -> tuple[str, str, str]:
        """Rate-limit identity used until a bucket hash is known."""
        return (self.route.method.value, self.route.template, self.major)

    @property
    def url_path(self) -> str:
        """Path including the query string."""
        if not self.query:
            return self.path
        return f"{self.path}?{'&'.join(self.query)}"

    def with_query_params(self, **params: object) -> CompiledRoute:
        """Return a copy with additional percent-encoded query parameters."""
        if not params:
            raise ConfigurationError("At least one query parameter is required")
        added = tuple(
            f"{key}={quote(str(value), safe='')}" for key, value in params.items()
        )
        return CompiledRoute(
            route=self.route,
            path=self.path,
            major_parameters=self.major_parameters,
            query=self.query + added,
        )

    def __str__(self) -> str:
        return f"{self.route.method.value}/{self.url_path}"


__all__ = [
    "MAJOR_PARAMETER_NAMES",
    "MAX_MAJOR_VALUE_LENGTH",
    "NO_MAJOR_PARAMETERS",
    "CompiledRoute",
    "HttpMethod",
    "Route",
]
