"""TarantoolSettings — validated broker address and tube configuration."""

from __future__ import annotations

import functools
import re

from pydantic import Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ValidationError
from .serialization import errors_from_pydantic

TUBE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

DEFAULT_ADDRESS = "tarantool:3301"
DEFAULT_TUBE = "events_queue"
ENV_PREFIX = "TARANTOOL_"


def validate_tube_name(tube: str) -> str:
    """Return *tube* unchanged if it is a safe Lua identifier.

    The tube name is interpolated into ``queue.tube.<tube>:put(...)``, so
    anything outside ``[A-Za-z0-9_]`` is rejected.
    """
    if not isinstance(tube, str) or not TUBE_NAME_PATTERN.match(tube):
        raise ValidationError({"tube": [f"invalid tube name: {tube!r}"]})
    return tube


def parse_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ValidationError({"address": [f"expected host:port, got {address!r}"]})
    try:
        port_number = int(port)
    except ValueError:
        raise ValidationError({"address": [f"invalid port in {address!r}"]}) from None
    if not 0 < port_number < 65536:
        raise ValidationError({"address": [f"port out of range in {address!r}"]})
    return host, port_number


def env_prefix_for(prefix: str) -> str:
    """``analytics`` -> ``ANALYTICS_TARANTOOL_``; empty -> ``TARANTOOL_``."""
    return f"{prefix.upper()}_{ENV_PREFIX}" if prefix else ENV_PREFIX


class TarantoolSettings(BaseSettings):
    """Connection and tube settings, fixed at startup.

    Instantiating reads ``TARANTOOL_ADDR``, ``TARANTOOL_QUEUE`` and the
    ``TARANTOOL_<FIELD>`` overrides from the environment; keyword arguments
    win over the environment. Empty variables count as unset.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        frozen=True,
        populate_by_name=True,
        loc_by_alias=False,
    )

    address: str = Field(default=DEFAULT_ADDRESS, validation_alias=f"{ENV_PREFIX}ADDR")
    tube: str = Field(default=DEFAULT_TUBE, validation_alias=f"{ENV_PREFIX}QUEUE")
    connect_timeout: float = Field(default=5.0, gt=0)
    request_timeout: float = Field(default=5.0, gt=0)
    reconnect_delay: float = Field(default=2.0, ge=0)
    max_reconnects: int = Field(default=5, ge=0)
    take_timeout: float = Field(default=2.0, ge=0)

    @field_validator("address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        try:
            parse_address(value)
        except ValidationError as e:
            raise ValueError(e.errors["address"][0]) from e
        return value

    @field_validator("tube")
    @classmethod
    def _check_tube(cls, value: str) -> str:
        try:
            return validate_tube_name(value)
        except ValidationError as e:
            raise ValueError(e.errors["tube"][0]) from e

    @classmethod
    def create(cls, **values: object) -> TarantoolSettings:
        """Build settings from *values* only, ignoring the environment.

        Pydantic errors are translated into our ValidationError.
        """
        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(errors_from_pydantic(e)) from e

    @classmethod
    def from_env(cls, prefix: str = "") -> TarantoolSettings:
        """Load settings from ``<PREFIX>_TARANTOOL_*`` environment variables.

        ``<PREFIX>_TARANTOOL_ADDR`` and ``<PREFIX>_TARANTOOL_QUEUE`` fall back to
        ``tarantool:3301`` and ``events_queue``; timeouts are optional overrides
        such as ``<PREFIX>_TARANTOOL_TAKE_TIMEOUT``.

        Raises:
            ValidationError: keyed by field name when a variable is invalid.
        """
        try:
            return _settings_class(env_prefix_for(prefix))()
        except PydanticValidationError as e:
            raise ValidationError(errors_from_pydantic(e)) from e


@functools.lru_cache(maxsize=None)
def _settings_class(env_prefix: str) -> type[TarantoolSettings]:
    if env_prefix == ENV_PREFIX:
        return TarantoolSettings

    class PrefixedTarantoolSettings(TarantoolSettings):
        model_config = SettingsConfigDict(env_prefix=env_prefix)

        address: str = Field(
            default=DEFAULT_ADDRESS, validation_alias=f"{env_prefix}ADDR"
        )
        tube: str = Field(default=DEFAULT_TUBE, validation_alias=f"{env_prefix}QUEUE")

    return PrefixedTarantoolSettings
