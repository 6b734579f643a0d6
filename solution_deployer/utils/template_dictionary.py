"""
Template Dictionary
===================
Run-scoped store of substitution values and the placeholder resolver that
rewrites {{path}} / {{path:transform}} tokens in item templates.
"""

import copy
import logging
import re
import threading
from typing import Any, Callable, Dict, Iterable, Optional, Set
from urllib.parse import quote

from ..config.deploy_config import ErrorMessages
from .exceptions import MissingSubstitutionError, SubstitutionConflictError


logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r'\{\{\s*([A-Za-z0-9_\-.]+?)(?::([A-Za-z]+))?\s*\}\}')

_MISSING = object()


TRANSFORMS: Dict[str, Callable[[str], str]] = {
    'identity': lambda value: value,
    'upperCase': lambda value: value.upper(),
    'lowerCase': lambda value: value.lower(),
    'urlEncode': lambda value: quote(value, safe=''),
}


def templatize_term(context: str, replacement: str, suffix: str = "") -> str:
    """
    Build a placeholder token.

    Args:
        context: Value being templatized; nothing happens when it is empty
        replacement: Dictionary path root to use in the token
        suffix: Path suffix appended to the root (e.g. ".itemId")

    Returns:
        "{{replacement + suffix}}", or context unchanged when context is empty
    """
    if not context:
        return context
    return "{{" + replacement + suffix + "}}"


def placeholder_roots(value: Any) -> Set[str]:
    """Get the first path segment of every placeholder in a structured value."""
    roots = set()
    if isinstance(value, str):
        roots.update(match.group(1).split('.')[0] for match in PLACEHOLDER_PATTERN.finditer(value))
    elif isinstance(value, dict):
        for key, child in value.items():
            roots |= placeholder_roots(key) | placeholder_roots(child)
    elif isinstance(value, (list, tuple)):
        for child in value:
            roots |= placeholder_roots(child)
    return roots


def apply_transform(name: Optional[str], value: Any) -> str:
    """Apply a named transform from the registry to a stringified value."""
    transform = TRANSFORMS.get(name or 'identity')
    if transform is None:
        raise ValueError(ErrorMessages.UNKNOWN_TRANSFORM.format(name=name))
    return transform(_stringify(value))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class TemplateDictionary:
    """Nested key/value store addressed by dotted paths."""

    def __init__(self, seed: Optional[Dict[str, Any]] = None):
        """
        Initialize the dictionary.

        Args:
            seed: Optional starting values; deep copied so the caller's dict is untouched
        """
        self._values: Dict[str, Any] = copy.deepcopy(seed) if seed else {}
        self._lock = threading.RLock()

    def set(self, path: str, value: Any):
        """
        Insert or merge a value at a dotted path.

        Dicts merged onto an existing dict form a shallow union favoring the
        new keys. Any other existing value is write-once.

        Args:
            path: Dotted path, e.g. "abc123.itemId"
            value: Value to store
        """
        parts = path.split('.')
        with self._lock:
            node = self._values
            for part in parts[:-1]:
                child = node.get(part)
                if not isinstance(child, dict):
                    if child is not None:
                        raise SubstitutionConflictError(path, child, value)
                    child = {}
                    node[part] = child
                node = child

            key = parts[-1]
            existing = node.get(key, _MISSING)
            if existing is _MISSING or existing is None:
                node[key] = value
            elif isinstance(existing, dict) and isinstance(value, dict):
                existing.update(value)
            elif existing != value:
                raise SubstitutionConflictError(path, existing, value)
            logger.debug(f"Set template dictionary value: {path}")

    def get(self, path: str, default: Any = None) -> Any:
        """Get the value at a dotted path, or default when absent."""
        value = self._lookup(path)
        return default if value is _MISSING else value

    def contains(self, path: str) -> bool:
        """Check whether a dotted path has a value."""
        return self._lookup(path) is not _MISSING

    def to_dict(self) -> Dict[str, Any]:
        """Get a deep copy of the current values."""
        with self._lock:
            return copy.deepcopy(self._values)

    def _lookup(self, path: str) -> Any:
        with self._lock:
            node: Any = self._values
            for part in path.split('.'):
                if isinstance(node, dict) and part in node:
                    node = node[part]
                elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                    node = node[int(part)]
                else:
                    return _MISSING
            return node

    def resolve(self, template: Any, strict: bool = True, deferred: Iterable[str] = ()) -> Any:
        """
        Replace every placeholder in a structured value.

        Args:
            template: String, or nested dicts/lists of strings
            strict: Raise MissingSubstitutionError for unknown paths; when False
                unknown tokens are left as-is
            deferred: Path roots whose tokens are always left as-is

        Returns:
            Deep copy of template with placeholders replaced
        """
        deferred = set(deferred)
        return self._resolve_value(template, strict, deferred)

    def _resolve_value(self, value: Any, strict: bool, deferred: set) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value, strict, deferred)
        if isinstance(value, dict):
            return {
                self._resolve_key(key, strict, deferred): self._resolve_value(child, strict, deferred)
                for key, child in value.items()
            }
        if isinstance(value, list):
            return [self._resolve_value(child, strict, deferred) for child in value]
        if isinstance(value, tuple):
            return tuple(self._resolve_value(child, strict, deferred) for child in value)
        return copy.deepcopy(value)

    def _resolve_key(self, key: Any, strict: bool, deferred: set) -> Any:
        if not isinstance(key, str):
            return key
        return _stringify(self._resolve_string(key, strict, deferred))

    def _resolve_string(self, text: str, strict: bool, deferred: set) -> Any:
        matches = list(PLACEHOLDER_PATTERN.finditer(text))
        if not matches:
            return text

        # A lone token keeps the value's type
        whole = matches[0]
        if len(matches) == 1 and whole.span() == (0, len(text)) and not whole.group(2):
            value = self._value_for(whole, strict, deferred)
            return text if value is _MISSING else copy.deepcopy(value)

        def replace(match):
            value = self._value_for(match, strict, deferred)
            if value is _MISSING:
                return match.group(0)
            return apply_transform(match.group(2), value)

        return PLACEHOLDER_PATTERN.sub(replace, text)

    def _value_for(self, match, strict: bool, deferred: set) -> Any:
        path = match.group(1)
        if path.split('.')[0] in deferred:
            return _MISSING
        value = self._lookup(path)
        if value is _MISSING and strict:
            raise MissingSubstitutionError(path)
        return value
