"""Declarative include/exclude filter compilation and evaluation.

Structured rules (paths, extensions, prefixes) are translated to regular
expressions and merged with the raw regex lists, giving one ordered list of
include matchers and one of exclude matchers. Evaluation is pure.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from codecache.errors import ConfigurationError, FilterCompileError
from codecache.models import FilterSpec

PRIORITY_INCLUDES = "includes"
PRIORITY_EXCLUDES = "excludes"
NO_EXTENSION = "no_extension"


def path_rule(path: str) -> str:
    """`dir/` selects the whole subtree, anything else exactly one file."""
    value = path.replace("\\", "/")
    if value.endswith("/"):
        return "^" + re.escape(value)
    return "^" + re.escape(value) + "$"


def ext_rule(ext: str) -> str:
    """`no_extension` selects files whose name has no dot."""
    value = ext.lstrip(".")
    if value == NO_EXTENSION:
        return r"(?:^|/)[^/.]*$"
    return r"\." + re.escape(value) + "$"


def prefix_rule(prefix: str) -> str:
    """Match `prefix` only at a path-segment boundary."""
    value = prefix.replace("\\", "/").rstrip("/")
    return "^" + re.escape(value) + r"(?:/|$)"


@dataclass(frozen=True)
class Filter:
    includes: tuple[re.Pattern, ...] = ()
    excludes: tuple[re.Pattern, ...] = ()
    priority: str = PRIORITY_INCLUDES
    text_only: bool = False

    def matches(self, rel_path: str) -> bool:
        """Inclusion verdict for one relative path."""
        match_include = not self.includes or any(p.search(rel_path) for p in self.includes)
        match_exclude = bool(self.excludes) and any(p.search(rel_path) for p in self.excludes)

        if match_include and match_exclude:
            return self.priority != PRIORITY_EXCLUDES
        if match_include:
            return True
        if match_exclude:
            return False
        return not self.includes

    def select(self, paths: Iterable[str]) -> list[str]:
        return [path for path in paths if self.matches(path)]


def _compile_all(patterns: Iterable[str]) -> tuple[re.Pattern, ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            raise FilterCompileError(pattern, str(exc)) from exc
    return tuple(compiled)


def _rules(spec: FilterSpec, kind: str) -> list[str]:
    paths = getattr(spec, f"{kind}Paths")
    exts = getattr(spec, f"{kind}Exts")
    prefixes = getattr(spec, f"{kind}Prefixes")
    raw = getattr(spec, f"{kind}Regex")
    rules = [path_rule(p) for p in paths if p]
    rules.extend(ext_rule(e) for e in exts if e and e.lstrip("."))
    rules.extend(prefix_rule(p) for p in prefixes if p and p.strip("/"))
    rules.extend(r for r in raw if r)
    return rules


def parse_filter_spec(raw: Any) -> FilterSpec:
    """Accept a FilterSpec, a mapping, a JSON string, or nothing."""
    if raw is None:
        return FilterSpec()
    if isinstance(raw, FilterSpec):
        return raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        if not text.strip():
            return FilterSpec()
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"error parsing filter JSON: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError("filter specification must be a JSON object")
    try:
        return FilterSpec.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid filter specification: {exc}") from exc


def compile_filter(raw: Any = None) -> Filter:
    """Compile a filter specification, failing as a whole on any bad pattern."""
    spec = parse_filter_spec(raw)
    return Filter(
        includes=_compile_all(_rules(spec, "include")),
        excludes=_compile_all(_rules(spec, "exclude")),
        priority=spec.priority or PRIORITY_INCLUDES,
        text_only=spec.isTextOnly,
    )
