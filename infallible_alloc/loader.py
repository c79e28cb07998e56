"""
infallible_alloc.loader
=======================

Reads a collector dump from disk into an :class:`AccessMap`.

Two encodings are understood.

JSON::

    {"crate": "demo",
     "items": {"main": {"kind": "fn", "name": "demo::main", "local": true,
                        "def_span": ["src/main.rs", 1, 1, 1, 10]},
               "push": {"kind": "fn", "name": "alloc::vec::Vec::<u8>::push"}},
     "accesses": [{"accessor": "main",
                   "accessees": [{"item": "push",
                                  "span": ["src/main.rs", 3, 5, 3, 20]}]}]}

S-expression (one form per line, ``;`` starts a comment)::

    (crate demo)
    (item main fn "demo::main" :local (def-span "src/main.rs" 1 1 1 10))
    (item push fn "alloc::vec::Vec::<u8>::push")
    (item glue asm "global_asm!{0}")
    (access main (push (span "src/main.rs" 3 5 3 20)))

Spans are ``file line [column [end_line [end_column]]]``.  An item is
local when it says so, otherwise when its crate is the dump's crate.
``asm`` items are kept as global assembly so the normalizer can skip them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import sexpdata

from infallible_alloc.access_model import (
    Access,
    AccessMap,
    ItemKind,
    Location,
    MonoItem,
)
from infallible_alloc.errors import DumpFormatError, ErrorCodes, InstancePathError
from infallible_alloc.instance_path import unit_from_path

logger = logging.getLogger(__name__)

DUMP_FORMATS = ("json", "sexp")

_EXTENSIONS = {
    ".json": "json",
    ".sexp": "sexp",
    ".sx": "sexp",
    ".lisp": "sexp",
}


@dataclass
class CollectorDump:
    """A loaded dump: the crate under analysis, its items and accesses."""

    crate: str
    items: Dict[str, MonoItem] = field(default_factory=dict)
    access_map: AccessMap = field(default_factory=AccessMap)
    source: str = ""

    def __repr__(self) -> str:
        return (
            f"CollectorDump(crate={self.crate!r}, items={len(self.items)}, "
            f"{self.access_map!r})"
        )


# ---------------------------------------------------------------------------
# Shared item construction
# ---------------------------------------------------------------------------

def _span(value: Any, source: str, what: str) -> Optional[Location]:
    if value is None:
        return None
    if (
        not isinstance(value, (list, tuple))
        or not value
        or not isinstance(value[0], str)
        or len(value) > 5
        or not all(isinstance(n, int) and not isinstance(n, bool) for n in value[1:])
    ):
        raise DumpFormatError(
            f"invalid span for {what}: {value!r}",
            code=ErrorCodes.INVALID_SPAN,
            source=source,
        ).with_hint("expected [file, line, column, end_line, end_column]")
    return Location(value[0], *value[1:])


def _make_item(
    item_id: str,
    kind: str,
    name: str,
    dump_crate: str,
    source: str,
    *,
    local: Optional[bool] = None,
    crate: Optional[str] = None,
    def_span: Optional[Location] = None,
    generic_args: Optional[List[Any]] = None,
) -> MonoItem:
    try:
        item_kind = ItemKind(kind)
    except ValueError:
        raise DumpFormatError(
            f"item {item_id!r} has unknown kind {kind!r}",
            code=ErrorCodes.INVALID_ITEM_KIND,
            source=source,
        ).with_hint("expected one of: fn, static, asm") from None

    if not item_kind.is_node:
        return MonoItem.global_asm(name)

    try:
        unit = unit_from_path(
            name,
            crate=crate,
            kind=item_kind,
            def_span=def_span,
            generic_args=generic_args,
        )
    except InstancePathError as exc:
        raise DumpFormatError(
            f"item {item_id!r}: {exc.message}",
            code=exc.code,
            source=source,
        ) from exc

    is_local = local if local is not None else unit.crate == dump_crate
    if is_local:
        unit = replace(unit, is_local=True)

    if item_kind is ItemKind.STATIC:
        return MonoItem.static(unit)
    return MonoItem.fn(unit)


def _register(dump: CollectorDump, item_id: str, item: MonoItem) -> None:
    if item_id in dump.items:
        raise DumpFormatError(
            f"item {item_id!r} is defined more than once",
            code=ErrorCodes.DUPLICATE_ITEM,
            source=dump.source,
        )
    dump.items[item_id] = item


def _lookup(dump: CollectorDump, item_id: Any) -> MonoItem:
    try:
        return dump.items[item_id]
    except (KeyError, TypeError):
        raise DumpFormatError(
            f"reference to undefined item {item_id!r}",
            code=ErrorCodes.UNKNOWN_ITEM,
            source=dump.source,
        ) from None


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

def load_json_dump(text: str, source: str = "<string>") -> CollectorDump:
    """Parse a JSON collector dump."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DumpFormatError(
            f"line {exc.lineno}: invalid JSON: {exc.msg}", source=source,
        ) from exc
    if not isinstance(data, dict) or not isinstance(data.get("crate"), str):
        raise DumpFormatError(
            "top-level object with a string \"crate\" key expected", source=source,
        )

    dump = CollectorDump(crate=data["crate"], source=source)

    items = data.get("items", {})
    if not isinstance(items, dict):
        raise DumpFormatError("\"items\" must be an object", source=source)
    for item_id, spec in items.items():
        if not isinstance(spec, dict) or not isinstance(spec.get("name"), str):
            raise DumpFormatError(
                f"item {item_id!r} must be an object with a string \"name\"",
                source=source,
            )
        _register(dump, item_id, _make_item(
            item_id,
            spec.get("kind", "fn"),
            spec["name"],
            dump.crate,
            source,
            local=spec.get("local"),
            crate=spec.get("crate"),
            def_span=_span(spec.get("def_span"), source, f"item {item_id!r}"),
            generic_args=spec.get("generic_args"),
        ))

    for entry in data.get("accesses", []):
        if not isinstance(entry, dict) or "accessor" not in entry:
            raise DumpFormatError(
                f"access entry without \"accessor\": {entry!r}", source=source,
            )
        accessor = _lookup(dump, entry["accessor"])
        accessees: List[Access] = []
        for accessee in entry.get("accessees", []):
            if isinstance(accessee, str):
                accessees.append(Access(_lookup(dump, accessee)))
                continue
            if not isinstance(accessee, dict):
                raise DumpFormatError(f"invalid accessee {accessee!r}", source=source)
            accessees.append(Access(
                _lookup(dump, accessee.get("item")),
                _span(accessee.get("span"), source, f"access to {accessee.get('item')!r}"),
            ))
        dump.access_map.add(accessor, accessees)

    return dump


# ---------------------------------------------------------------------------
# S-expressions
# ---------------------------------------------------------------------------

def _normalise(obj: Any) -> Any:
    """sexpdata output to plain lists, strings and numbers."""
    if isinstance(obj, list):
        return [_normalise(x) for x in obj]
    if isinstance(obj, sexpdata.Symbol):
        return str(obj)
    return obj


def _parse_sexp_many(text: str, source: str) -> List[Any]:
    try:
        parsed = sexpdata.loads(f"({text})", nil=None, true=None)
    except Exception as exc:
        raise DumpFormatError(
            f"failed to parse S-expression stream: {exc}", source=source,
        ) from exc
    return [_normalise(form) for form in parsed]


def _sexp_options(
    rest: Sequence[Any], item_id: str, source: str,
) -> Dict[str, Any]:
    """Keyword flags and sub-forms following the name of an ``item`` form."""
    options: Dict[str, Any] = {}
    index = 0
    while index < len(rest):
        token = rest[index]
        if token == ":local":
            options["local"] = True
        elif token == ":extern":
            options["local"] = False
        elif token == ":crate":
            index += 1
            if index >= len(rest):
                raise DumpFormatError(f"item {item_id!r}: :crate needs a value", source=source)
            options["crate"] = str(rest[index])
        elif isinstance(token, list) and token and token[0] == "def-span":
            options["def_span"] = _span(token[1:], source, f"item {item_id!r}")
        elif isinstance(token, list) and token and token[0] == "generic-args":
            options["generic_args"] = [str(a) for a in token[1:]]
        else:
            raise DumpFormatError(
                f"item {item_id!r}: unexpected {token!r}", source=source,
            )
        index += 1
    return options


def _sexp_accessee(dump: CollectorDump, form: Any) -> Access:
    if not isinstance(form, list):
        return Access(_lookup(dump, form))
    if not form:
        raise DumpFormatError("empty accessee form", source=dump.source)
    item = _lookup(dump, form[0])
    location = None
    for sub in form[1:]:
        if isinstance(sub, list) and sub and sub[0] == "span":
            location = _span(sub[1:], dump.source, f"access to {form[0]!r}")
        else:
            raise DumpFormatError(
                f"access to {form[0]!r}: unexpected {sub!r}", source=dump.source,
            )
    return Access(item, location)


def load_sexp_dump(text: str, source: str = "<string>") -> CollectorDump:
    """Parse an S-expression collector dump."""
    forms = _parse_sexp_many(text, source)

    crate_forms = [f for f in forms if isinstance(f, list) and f[:1] == ["crate"]]
    if len(crate_forms) != 1 or len(crate_forms[0]) != 2:
        raise DumpFormatError("exactly one (crate NAME) form expected", source=source)
    dump = CollectorDump(crate=str(crate_forms[0][1]), source=source)

    # Items first so that access forms may precede the items they name.
    for form in forms:
        if not isinstance(form, list) or not form:
            raise DumpFormatError(f"unexpected top-level atom {form!r}", source=source)
        if form[0] != "item":
            continue
        if len(form) < 4 or not isinstance(form[3], str):
            raise DumpFormatError(
                f"malformed item form {form!r}", source=source,
            ).with_hint('expected (item ID KIND "NAME" ...)')
        item_id, kind, name = str(form[1]), str(form[2]), form[3]
        options = _sexp_options(form[4:], item_id, source)
        _register(dump, item_id, _make_item(
            item_id, kind, name, dump.crate, source, **options,
        ))

    for form in forms:
        head = form[0]
        if head in ("crate", "item"):
            continue
        if head != "access":
            raise DumpFormatError(f"unknown form ({head} ...)", source=source)
        if len(form) < 2:
            raise DumpFormatError("access form without accessor", source=source)
        accessor = _lookup(dump, str(form[1]))
        dump.access_map.add(accessor, [_sexp_accessee(dump, f) for f in form[2:]])

    return dump


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

def detect_format(path: Union[str, Path], text: str) -> str:
    """Pick a format from the file extension, else from the first character."""
    fmt = _EXTENSIONS.get(Path(path).suffix.lower())
    if fmt:
        return fmt
    return "json" if text.lstrip().startswith("{") else "sexp"


def load_dump(path: Union[str, Path], fmt: Optional[str] = None) -> CollectorDump:
    """Load the collector dump at *path*.

    Parameters
    ----------
    path : str or Path
        Dump file.
    fmt : {"json", "sexp"}, optional
        Force a format instead of detecting it.

    Raises
    ------
    DumpFormatError
        The file cannot be read or is not a valid dump.
    """
    source = str(path)
    if fmt is not None and fmt not in DUMP_FORMATS:
        raise DumpFormatError(
            f"unknown dump format {fmt!r}",
            code=ErrorCodes.UNKNOWN_DUMP_FORMAT,
            source=source,
        ).with_hint("expected one of: " + ", ".join(DUMP_FORMATS))
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise DumpFormatError(f"cannot read dump: {exc.strerror}", source=source) from exc

    fmt = fmt or detect_format(path, text)
    logger.debug("loading %s dump from %s", fmt, source)
    if fmt == "json":
        dump = load_json_dump(text, source)
    else:
        dump = load_sexp_dump(text, source)
    logger.info("loaded %r", dump)
    return dump


__all__ = [
    "DUMP_FORMATS",
    "CollectorDump",
    "detect_format",
    "load_dump",
    "load_json_dump",
    "load_sexp_dump",
]
