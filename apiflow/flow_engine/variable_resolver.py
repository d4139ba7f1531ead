"""
Variable Resolver - Substitutes ${name} and {{name}} placeholders

Supports:
- ${token} / {{token}} - Bound variable
- Nested paths: ${user.profile.email}
- Array access: ${user.roles[0]}, ${items.0.id}
- JSONPath-lite for extraction rules: $.data.items[0].id

Unbound placeholders are left verbatim so a half-configured flow still shows
what it is missing in the outgoing request.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from apiflow.flow_engine.errors import VariableExtractionError

logger = logging.getLogger(__name__)


class _Missing:
    """Marker for a path that does not resolve (distinct from a bound None)"""

    def __repr__(self):
        return 'MISSING'

    def __bool__(self):
        return False


MISSING = _Missing()

PLACEHOLDER_PATTERN = re.compile(r'\$\{([^{}]+)\}|\{\{([^{}]+)\}\}')

_SEGMENT_PATTERN = re.compile(
    r"""
      (?P<key>[^.\[\]]+)
    | \[(?P<index>\d+)\]
    | \[(?P<quote>['"])(?P<qkey>.*?)(?P=quote)\]
    """,
    re.VERBOSE,
)

PathSegment = Union[str, int]


def parse_path(path: str) -> List[PathSegment]:
    """
    Split a path into keys and indexes.

    Examples:
        "data.token"         -> ["data", "token"]
        "$.items[0].id"      -> ["items", 0, "id"]
        "headers['x-id']"    -> ["headers", "x-id"]

    Raises:
        VariableExtractionError: If the path is malformed
    """
    if not isinstance(path, str):
        raise VariableExtractionError(f"Path must be a string, got {type(path).__name__}", path=path)

    text = path.strip()
    if text.startswith('$'):
        text = text[1:]
        if text.startswith('.'):
            text = text[1:]

    segments: List[PathSegment] = []
    pos = 0
    while pos < len(text):
        if text[pos] == '.':
            if not segments:
                raise VariableExtractionError(f"Malformed path: {path}", path=path)
            pos += 1
            match = _SEGMENT_PATTERN.match(text, pos)
            if not match or match.group('key') is None:
                raise VariableExtractionError(f"Malformed path: {path}", path=path)
        else:
            match = _SEGMENT_PATTERN.match(text, pos)
            if not match:
                raise VariableExtractionError(f"Malformed path: {path}", path=path)
            if match.group('key') is not None and segments:
                # "a[0]b" - keys must be separated by dots
                raise VariableExtractionError(f"Malformed path: {path}", path=path)

        if match.group('key') is not None:
            segments.append(match.group('key').strip())
        elif match.group('index') is not None:
            segments.append(int(match.group('index')))
        else:
            segments.append(match.group('qkey'))
        pos = match.end()

    return segments


def resolve_path(data: Any, path: str) -> Any:
    """
    Resolve a dot/array-index path inside data.

    Args:
        data: Response body, binding map or any nested dict/list structure
        path: Path such as "data.token" or "$.items[0].id" (empty means data)

    Returns:
        The value at path, or MISSING if any segment does not exist

    Raises:
        VariableExtractionError: If the path is malformed
    """
    current = data
    for segment in parse_path(path):
        if isinstance(current, dict):
            if segment in current:
                current = current[segment]
            elif isinstance(segment, int) and str(segment) in current:
                current = current[str(segment)]
            else:
                return MISSING
        elif isinstance(current, (list, tuple)):
            if isinstance(segment, str):
                if not segment.isdigit():
                    return MISSING
                segment = int(segment)
            if segment >= len(current):
                return MISSING
            current = current[segment]
        else:
            return MISSING
    return current


def to_text(value: Any) -> str:
    """String form of a bound value when substituted into text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None:
        return 'null'
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(',', ':'), ensure_ascii=False, default=str)
    return str(value)


def find_placeholders(text: Any) -> List[str]:
    """Names referenced by placeholders in text, in order of appearance."""
    if not isinstance(text, str):
        return []
    return [(m.group(1) or m.group(2)).strip() for m in PLACEHOLDER_PATTERN.finditer(text)]


class VariableResolver:
    """
    Resolves placeholders against a binding snapshot.

    Examples (bindings = {"token": "abc", "user": {"id": 7, "roles": ["admin"]}}):
        "Bearer ${token}"      -> "Bearer abc"
        "{{user.id}}"          -> "7"
        "${user.roles[0]}"     -> "admin"
        "${user}"              -> '{"id":7,"roles":["admin"]}'
        "${missing}"           -> "${missing}"
    """

    def __init__(self, bindings: Optional[Dict[str, Any]] = None):
        self.bindings = bindings or {}

    def resolve(self, value: Any) -> Any:
        """
        Resolve placeholders in value (recursively handles dicts, lists, strings).

        Only string leaves are rewritten; dict keys and non-string leaves pass
        through. The input is never mutated.
        """
        if isinstance(value, str):
            return self._resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(item) for item in value]
        elif isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        else:
            return value

    def _resolve_string(self, text: str) -> str:
        if '${' not in text and '{{' not in text:
            return text

        def replace_var(match):
            name = (match.group(1) or match.group(2)).strip()
            value = self.lookup(name)
            if value is MISSING:
                return match.group(0)
            return to_text(value)

        return PLACEHOLDER_PATTERN.sub(replace_var, text)

    def lookup(self, name: str) -> Any:
        """
        Value bound to a placeholder name, or MISSING.

        A binding whose name literally contains dots wins over path traversal.
        """
        if name in self.bindings:
            return self.bindings[name]
        try:
            return resolve_path(self.bindings, name)
        except VariableExtractionError:
            logger.debug(f"Ignoring malformed placeholder: {name}")
            return MISSING

    def find_unbound(self, value: Any) -> List[str]:
        """
        Placeholder names in value that have no binding.

        Returns:
            List of unresolved names (empty if everything resolves)
        """
        unbound = []
        if isinstance(value, str):
            for name in find_placeholders(value):
                if self.lookup(name) is MISSING and name not in unbound:
                    unbound.append(name)
        elif isinstance(value, dict):
            for v in value.values():
                unbound.extend(n for n in self.find_unbound(v) if n not in unbound)
        elif isinstance(value, (list, tuple)):
            for item in value:
                unbound.extend(n for n in self.find_unbound(item) if n not in unbound)
        return unbound


def interpolate(value: Any, bindings: Optional[Dict[str, Any]]) -> Any:
    """Return a copy of value with placeholders substituted from bindings."""
    return VariableResolver(bindings).resolve(value)
