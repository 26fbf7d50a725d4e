"""Configuration — remap rule decoding and Pydantic models for keyhook settings."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Iterable

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from keyhook.errors import ConfigurationError
from keyhook.remap import KeyMap, KeyRule

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_ENV_PREFIX = "KEYHOOK_"


def hex_decode(text: str) -> bytes:
    """Decode an even-length hexadecimal string into bytes.

    Raises:
        ConfigurationError: the string is empty, has odd length, or holds
            a pair that is not hexadecimal.
    """
    if not text:
        raise ConfigurationError("hex string cannot be empty")
    if len(text) % 2:
        raise ConfigurationError(
            f"hex string must have even length, got {len(text)} characters"
        )

    out = bytearray()
    for i in range(0, len(text), 2):
        pair = text[i : i + 2]
        # int() alone would accept signs and whitespace.
        if not all(c in _HEX_DIGITS for c in pair):
            raise ConfigurationError(
                f"invalid hex characters '{pair}' at position {i}"
            )
        out.append(int(pair, 16))
    return bytes(out)


def parse_keymap(spec: str) -> KeyRule:
    """Parse an ``INPUT_HEX:OUTPUT_HEX`` rule.

    The output side may be empty, meaning the input sequence is dropped.
    """
    parts = spec.split(":")
    if len(parts) != 2:
        raise ConfigurationError(
            f"invalid keymap format '{spec}', expected format 'input_hex:output_hex'"
        )
    raw_in, raw_out = parts

    try:
        pattern = hex_decode(raw_in)
    except ConfigurationError as e:
        raise ConfigurationError(f"invalid input hex string '{raw_in}' ({e})") from e

    output = b""
    if raw_out:
        try:
            output = hex_decode(raw_out)
        except ConfigurationError as e:
            raise ConfigurationError(
                f"invalid output hex string '{raw_out}' ({e})"
            ) from e

    return KeyRule(pattern, output)


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got '{value}'")


def _keyhook_environment() -> dict[str, str]:
    """``KEYHOOK_*`` settings from the nearest .env and the environment."""
    settings: dict[str, str] = {}
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        for key, value in dotenv_values(dotenv_path).items():
            if key.startswith(_ENV_PREFIX) and value is not None:
                settings[key] = value
        logger.debug("Read %d settings from %s", len(settings), dotenv_path)
    for key, value in os.environ.items():
        if key.startswith(_ENV_PREFIX):
            settings[key] = value
    return settings


class KeymapRule(BaseModel):
    """A remap rule as written in a config file: two hex strings."""

    input: str = Field(description="Hex-encoded byte sequence to match")
    output: str = Field(
        default="", description="Hex-encoded replacement (empty drops the input)"
    )

    @field_validator("input")
    @classmethod
    def _check_input(cls, v: str) -> str:
        try:
            hex_decode(v)
        except ConfigurationError as e:
            raise ValueError(f"invalid input hex string '{v}' ({e})") from None
        return v.lower()

    @field_validator("output")
    @classmethod
    def _check_output(cls, v: str) -> str:
        if v:
            try:
                hex_decode(v)
            except ConfigurationError as e:
                raise ValueError(f"invalid output hex string '{v}' ({e})") from None
        return v.lower()

    def to_rule(self) -> KeyRule:
        return KeyRule(
            hex_decode(self.input), hex_decode(self.output) if self.output else b""
        )


class KeyhookConfig(BaseModel):
    """Top-level keyhook configuration."""

    keymaps: list[KeymapRule] = Field(default_factory=list)
    select_timeout: float = Field(
        default=0.1,
        gt=0,
        description="Seconds the controller loop waits for I/O before re-checking the worker",
    )
    read_size: int = Field(
        default=16384, gt=0, description="Maximum bytes moved per read"
    )
    new_session: bool = Field(
        default=True,
        description=(
            "Start the worker in a new session with the PTY as its controlling "
            "terminal, so job control and Ctrl-C reach it."
        ),
    )
    log_file: str | None = Field(
        default=None, description="Write log records here instead of stderr"
    )
    verbose: bool = Field(default=False)

    @field_validator("keymaps", mode="before")
    @classmethod
    def _expand_rule_strings(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        expanded: list[Any] = []
        for item in v:
            if isinstance(item, str):
                raw_in, sep, raw_out = item.partition(":")
                if not sep or ":" in raw_out:
                    raise ValueError(
                        f"invalid keymap format '{item}', expected format 'input_hex:output_hex'"
                    )
                expanded.append({"input": raw_in, "output": raw_out})
            else:
                expanded.append(item)
        return expanded

    def build_keymap(self, extra: Iterable[KeyRule] = ()) -> KeyMap:
        """Config-file rules first, then ``extra`` (command line) rules."""
        rules = [r.to_rule() for r in self.keymaps]
        rules.extend(extra)
        return KeyMap(rules)

    @classmethod
    def load(cls, config_path: str | None = None) -> KeyhookConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > .env file > config file > defaults. Only
        ``KEYHOOK_*`` entries are read from .env, and the process environment
        is left as it is, so the wrapped command inherits it unchanged.

        Env vars:
            KEYHOOK_KEYMAP          - Comma separated IN:OUT rules, added after file rules
            KEYHOOK_SELECT_TIMEOUT  - Controller loop readiness timeout in seconds
            KEYHOOK_READ_SIZE       - Read buffer size in bytes
            KEYHOOK_NEW_SESSION     - 0 to keep the worker in keyhook's session
            KEYHOOK_LOG_FILE        - Log file path

        Raises:
            ConfigurationError: the file is unreadable or any value is invalid.
        """
        env = _keyhook_environment()

        config_data: dict[str, Any] = {}

        if config_path:
            try:
                with open(config_path) as f:
                    config_data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(
                    f"cannot read config file {config_path}: {e}"
                ) from e
            if not isinstance(config_data, dict):
                raise ConfigurationError(
                    f"config file {config_path} must contain a JSON object"
                )

        env_keymap = env.get("KEYHOOK_KEYMAP")
        if env_keymap:
            rules = list(config_data.get("keymaps", []))
            rules.extend(s.strip() for s in env_keymap.split(",") if s.strip())
            config_data["keymaps"] = rules

        env_timeout = env.get("KEYHOOK_SELECT_TIMEOUT")
        if env_timeout:
            config_data["select_timeout"] = env_timeout

        env_read_size = env.get("KEYHOOK_READ_SIZE")
        if env_read_size:
            config_data["read_size"] = env_read_size

        env_new_session = env.get("KEYHOOK_NEW_SESSION")
        if env_new_session:
            config_data["new_session"] = _parse_bool(
                "KEYHOOK_NEW_SESSION", env_new_session
            )

        env_log_file = env.get("KEYHOOK_LOG_FILE")
        if env_log_file:
            config_data["log_file"] = env_log_file

        try:
            config = cls.model_validate(config_data)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
        logger.debug("Loaded config: %d keymap rules", len(config.keymaps))
        return config
