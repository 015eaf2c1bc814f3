"""Secret redaction for rendered Dex configuration.

A single walker, ``iterate_string_fields``, visits every string leaf of a
dynamic tree (dicts, lists, scalars) that is the direct value of a map key
and lets a callback rewrite it.  Both output paths use it:

    LOG_RULES      -- debug logging of the running configuration.
    DISPLAY_RULES  -- ``gendexcfg`` printing to stdout.

Matching is by exact (case-sensitive) field name at any depth.  Redaction
never changes structure, key sets or sequence lengths; only matched string
leaves are replaced.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import yaml

from dexvisor.errors import RenderError

StringCallback = Callable[[str, str], str]


@dataclass(frozen=True)
class RedactionRules:
    """Field names to mask, the mask token and an optional top-level scope.

    When ``scope`` is set only the value stored under that top-level key is
    walked; the rest of the document is left untouched.
    """

    fields: frozenset[str]
    mask: str
    scope: str | None = None

    def replace(self, name: str, value: str) -> str:
        if name in self.fields:
            return self.mask
        return value


LOG_RULES = RedactionRules(
    fields=frozenset({"clientSecret", "secret", "bindPW"}),
    mask="********",
)

# gendexcfg only hides the Argo CD client secrets; connector credentials are
# shown as configured.
DISPLAY_RULES = RedactionRules(
    fields=frozenset({"secret"}),
    mask="******",
    scope="staticClients",
)


def iterate_string_fields(obj: Any, callback: StringCallback) -> None:
    """Walk *obj* in place, replacing each map string value with ``callback(key, value)``.

    Non-string map values are recursed into without their key; list
    elements are recursed into without any name context.
    """
    if isinstance(obj, dict):
        for key, val in obj.items():
            if isinstance(val, str):
                obj[key] = callback(key, val)
            else:
                iterate_string_fields(val, callback)
    elif isinstance(obj, list):
        for item in obj:
            iterate_string_fields(item, callback)


def redact(tree: Any, rules: RedactionRules) -> Any:
    """Redact *tree* in place according to *rules* and return it."""
    if rules.scope is None:
        iterate_string_fields(tree, rules.replace)
    elif isinstance(tree, dict) and rules.scope in tree:
        iterate_string_fields(tree[rules.scope], rules.replace)
    return tree


def redact_document(document: bytes, rules: RedactionRules) -> str:
    """Parse a YAML *document*, redact it and serialise it back to YAML."""
    if not document:
        return ""
    try:
        tree = yaml.safe_load(document)
    except yaml.YAMLError as exc:
        raise RenderError(f"rendered dex config is not valid YAML: {exc}") from exc
    return yaml.safe_dump(redact(tree, rules), default_flow_style=False, sort_keys=True)
