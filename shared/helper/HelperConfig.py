"""Environment-backed configuration for the document chat service."""

import logging
import os
from typing import Any

from shared.exceptions import InvalidConfig

_TRUE_WORDS = ("true", "1", "yes", "on")
_FALSE_WORDS = ("false", "0", "no", "off")


class HelperConfig:
    """Reads settings from environment variables and hands out the shared logger.

    Keys are case-insensitive and empty variables count as unset. Every
    unusable value raises InvalidConfig, which is also a ValueError.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _lookup(self, key: str, default: Any) -> tuple[str, str | None]:
        key = key.upper()
        raw = (os.getenv(key) or "").strip() or None
        if raw is None and default is None:
            raise InvalidConfig(f"Environment variable '{key}' is not set.")
        return key, raw

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string environment variable.

        Raises:
            InvalidConfig: If the variable is not set and no default is provided.
        """
        _, raw = self._lookup(key, default)
        return raw if raw is not None else default

    def get_number_val(
        self,
        key: str,
        default: float | int | None = None,
        minimum: float | int | None = None,
    ) -> float | int:
        """Read a numeric environment variable.

        Args:
            key (str): Environment variable name (case-insensitive).
            default (float | int | None): Fallback value if the variable is not set.
            minimum (float | int | None): Smallest accepted value, checked for set variables.

        Returns:
            float | int: An int unless the value contains a decimal point.

        Raises:
            InvalidConfig: If the variable is missing without default, is not a
                number, or is below `minimum`.
        """
        key, raw = self._lookup(key, default)
        if raw is None:
            return default
        try:
            value = float(raw) if "." in raw else int(raw)
        except ValueError:
            raise InvalidConfig(f"Environment variable '{key}' is not a valid number: '{raw}'.")
        if minimum is not None and value < minimum:
            raise InvalidConfig(f"Environment variable '{key}' must be at least {minimum}, got {value}.")
        return value

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean environment variable (true/1/yes/on or false/0/no/off).

        Raises:
            InvalidConfig: If the variable is missing without default or is not a boolean word.
        """
        key, raw = self._lookup(key, default)
        if raw is None:
            return default
        word = raw.lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise InvalidConfig(f"Environment variable '{key}' is not a boolean: '{raw}'.")

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list environment variable written as "[elem1,elem2,...]".

        Blank elements are dropped and the others cast to `element_type`.

        Raises:
            InvalidConfig: If the variable is missing without default, lacks the
                brackets, or holds an element that cannot be cast.
        """
        key, raw = self._lookup(key, default)
        if raw is None:
            return default
        if not (raw.startswith("[") and raw.endswith("]")):
            raise InvalidConfig(f"Environment variable '{key}' must look like '[elem1{separator}elem2]', got '{raw}'.")
        try:
            return [element_type(elem.strip()) for elem in raw[1:-1].split(separator) if elem.strip()]
        except ValueError as e:
            raise InvalidConfig(f"Environment variable '{key}' holds a value that is not {element_type.__name__}: {e}")

    def get_logger(self) -> logging.Logger:
        return self._logger
