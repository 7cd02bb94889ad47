"""
Query Condition Resolver for reststores.

A store declares a static condition *template* describing how search
fields map to backend predicates. At query time the template is resolved
against the live filter values into a backend-neutral condition tree.

Template nodes are plain dicts:

    Leaf:       {"type": "eq", "args": ["surname", "#surname#"]}
    Composite:  {"type": "and" | "or", "args": [node, node, ...]}
    Fan-out:    {"type": "each", "value": "tags", "separator": ",",
                 "link_type": "or", "as": "tag",
                 "args": [{"type": "contains", "args": ["tags", "#tag#"]}]}

Any node may carry guards, checked before anything else:

    "if_defined":     "a,b"   every listed filter must have a value
    "if_not_defined": "a,b"   no listed filter may have a value
    "if":             callable(request) -> bool

Resolution rules:
- "#field#" in a leaf's value is replaced with the filter value; the field
  must be an allowed (searchable) field, else StoreConfigurationError.
  If the filter has no value the whole leaf is dropped.
- A composite drops children that resolve to nothing. Zero survivors
  drops the composite, one survivor replaces it.
- "each" splits the source filter value on `separator` (default " ") and
  resolves its args once per token, binding the token as `as`
  (default "<value>Each"). Results are linked with `link_type`
  (default "and") under the same collapse rule.
- A root that resolves to nothing yields {} (match everything).

Example:
    >>> resolve_conditions(
    ...     {"type": "eq", "args": ["surname", "#surname#"]},
    ...     {"surname": "Mobily"},
    ...     {"surname"},
    ... )
    {'type': 'eq', 'args': ['surname', 'Mobily']}
"""

from __future__ import annotations

import copy
import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from .errors import StoreConfigurationError

if TYPE_CHECKING:
    from .context import RequestContext

logger = logging.getLogger(__name__)

LOGICAL_TYPES = frozenset({"and", "or"})
FANOUT_TYPE = "each"

# Keys consumed by the resolver and never emitted
GUARD_KEYS = frozenset({"if_defined", "if_not_defined", "if"})
FANOUT_KEYS = frozenset({"value", "separator", "link_type", "as"})

_REFERENCE = re.compile(r"^#(.+?)#$")

Node = dict[str, Any]


def _is_set(values: Mapping[str, Any], name: str) -> bool:
    return values.get(name) is not None


def _split_names(spec: str | Iterable[str]) -> list[str]:
    if isinstance(spec, str):
        return [s.strip() for s in spec.split(",") if s.strip()]
    return list(spec)


class _Resolver:
    """One resolution run over private copies of the inputs."""

    def __init__(
        self,
        filter_values: Mapping[str, Any],
        allowed_fields: Iterable[str],
        request: RequestContext | None,
    ):
        self.values: dict[str, Any] = copy.deepcopy(dict(filter_values or {}))
        self.allowed: set[str] = set(allowed_fields or ())
        self.request = request

    # ==================== Guards ====================

    def _guards_pass(self, node: Node) -> bool:
        if_defined = node.get("if_defined")
        if if_defined and not all(_is_set(self.values, n) for n in _split_names(if_defined)):
            return False

        if_not_defined = node.get("if_not_defined")
        if if_not_defined and any(_is_set(self.values, n) for n in _split_names(if_not_defined)):
            return False

        predicate: Callable[[Any], bool] | None = node.get("if")
        if callable(predicate) and not predicate(self.request):
            return False

        return True

    # ==================== Nodes ====================

    def resolve(self, node: Node | None) -> Node | None:
        if not node:
            return None
        if not self._guards_pass(node):
            return None

        node_type = node.get("type")
        if node_type in LOGICAL_TYPES:
            return self._resolve_composite(node, node_type, node.get("args", []))
        if node_type == FANOUT_TYPE:
            return self._resolve_fanout(node)
        return self._resolve_leaf(node)

    def _resolve_children(self, children: Iterable[Node]) -> list[Node]:
        resolved = []
        for child in children:
            result = self.resolve(child)
            if result is not None:
                resolved.append(result)
        return resolved

    def _collapse(self, node: Node, link_type: str, children: list[Node]) -> Node | None:
        if not children:
            return None
        if len(children) == 1:
            return children[0]
        out = {
            k: copy.deepcopy(v)
            for k, v in node.items()
            if k not in GUARD_KEYS and k not in FANOUT_KEYS and k not in ("type", "args")
        }
        out["type"] = link_type
        out["args"] = children
        return out

    def _resolve_composite(self, node: Node, link_type: str, children: Iterable[Node]) -> Node | None:
        return self._collapse(node, link_type, self._resolve_children(children))

    def _resolve_fanout(self, node: Node) -> Node | None:
        source = node.get("value")
        if not source:
            raise StoreConfigurationError(f"'each' condition needs a 'value' field: {node!r}")

        raw = self.values.get(source)
        if raw is None or raw == "":
            return None

        if isinstance(raw, str):
            tokens = raw.split(node.get("separator") or " ")
        elif isinstance(raw, (list, tuple)):
            tokens = list(raw)
        else:
            tokens = [raw]

        binding = node.get("as") or f"{source}Each"

        # The binding is visible only inside this fan-out's own args
        outer_values, outer_allowed = self.values, self.allowed
        self.values = dict(outer_values)
        self.allowed = outer_allowed | {binding}
        children: list[Node] = []
        try:
            for token in tokens:
                self.values[binding] = token
                children.extend(self._resolve_children(node.get("args", [])))
        finally:
            self.values, self.allowed = outer_values, outer_allowed

        return self._collapse(node, node.get("link_type") or "and", children)

    def _substitute(self, arg: Any) -> tuple[bool, Any]:
        """Returns (keep, value). keep=False drops the enclosing leaf."""
        if not isinstance(arg, str):
            return True, arg
        match = _REFERENCE.match(arg)
        if not match:
            return True, arg

        name = match.group(1)
        if name not in self.allowed:
            raise StoreConfigurationError(
                f"Searched for {arg}, but no corresponding entry in the search schema"
            )
        if not _is_set(self.values, name):
            return False, None
        return True, self.values[name]

    def _resolve_leaf(self, node: Node) -> Node | None:
        args = list(node.get("args", []))
        out: Node = {"type": node.get("type")}

        # Unary operators (isNull etc.) have nothing to substitute
        if len(args) < 2:
            out["args"] = copy.deepcopy(args)
            return out

        target, value = args[0], args[1]
        if isinstance(value, (list, tuple)):
            resolved_values = []
            for item in value:
                keep, resolved = self._substitute(item)
                if not keep:
                    return None
                resolved_values.append(resolved)
            resolved_value: Any = resolved_values
        else:
            keep, resolved_value = self._substitute(value)
            if not keep:
                return None

        out["args"] = [target, copy.deepcopy(resolved_value), *copy.deepcopy(args[2:])]
        return out


def resolve_conditions(
    template: Node | None,
    filter_values: Mapping[str, Any] | None,
    allowed_fields: Iterable[str],
    request: RequestContext | None = None,
) -> Node:
    """
    Resolve a condition template against live filter values.

    Pure function: neither `filter_values` nor `allowed_fields` is
    modified, and the same inputs always give a structurally identical
    tree.

    Args:
        template: Static condition template (may be None or {})
        filter_values: Validated filter values
        allowed_fields: Names that "#name#" references may use
        request: Passed to "if" guard predicates

    Returns:
        Resolved condition tree, or {} to match everything

    Raises:
        StoreConfigurationError: A reference names a non-searchable field
    """
    resolved = _Resolver(filter_values or {}, allowed_fields, request).resolve(template)
    if resolved is None:
        logger.debug("Condition template resolved to match-all")
        return {}
    return resolved


def default_conditions(search_fields: Iterable[str]) -> Node:
    """
    Template used when a store declares none: every search field is
    compared for equality with its own filter value.
    """
    names = list(search_fields)
    if not names:
        return {}
    if len(names) == 1:
        return eq(names[0], f"#{names[0]}#")
    return and_(*(eq(name, f"#{name}#") for name in names))


def template_references(template: Node | None) -> set[str]:
    """All '#name#' references used in a template (fan-out bindings included)."""
    found: set[str] = set()

    def visit(node: Any) -> None:
        if isinstance(node, dict):
            for key, value in node.items():
                if key != "if":
                    visit(value)
        elif isinstance(node, (list, tuple)):
            for item in node:
                visit(item)
        elif isinstance(node, str):
            match = _REFERENCE.match(node)
            if match:
                found.add(match.group(1))

    visit(template)
    return found


def fanout_bindings(template: Node | None) -> set[str]:
    """Names bound by the 'each' nodes of a template."""
    bound: set[str] = set()

    def visit(node: Any) -> None:
        if isinstance(node, dict):
            if node.get("type") == FANOUT_TYPE and node.get("value"):
                bound.add(node.get("as") or f"{node['value']}Each")
            for child in node.get("args", []):
                visit(child)
        elif isinstance(node, (list, tuple)):
            for item in node:
                visit(item)

    visit(template)
    return bound


def unknown_references(template: Node | None, allowed_fields: Iterable[str]) -> set[str]:
    """
    References that would fail at resolve time.

    Stores call this at construction to warn early; resolution itself
    remains the authority.
    """
    return template_references(template) - set(allowed_fields) - fanout_bindings(template)


# ==================== Template builders ====================


def leaf(op: str, target: str, value: Any = None, **extra: Any) -> Node:
    node: Node = {"type": op, "args": [target] if value is None else [target, value]}
    node.update(extra)
    return node


def eq(target: str, value: Any, **extra: Any) -> Node:
    return leaf("eq", target, value, **extra)


def and_(*args: Node, **extra: Any) -> Node:
    return {"type": "and", "args": list(args), **extra}


def or_(*args: Node, **extra: Any) -> Node:
    return {"type": "or", "args": list(args), **extra}


def each(
    value: str,
    *args: Node,
    separator: str | None = None,
    link_type: str | None = None,
    as_: str | None = None,
    **extra: Any,
) -> Node:
    node: Node = {"type": FANOUT_TYPE, "value": value, "args": list(args), **extra}
    if separator is not None:
        node["separator"] = separator
    if link_type is not None:
        node["link_type"] = link_type
    if as_ is not None:
        node["as"] = as_
    return node
