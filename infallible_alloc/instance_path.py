"""
infallible_alloc.instance_path
==============================

Parser for rendered instance paths such as::

    alloc::vec::Vec::<u8>::push
    alloc::raw_vec::RawVec<T, A>::reserve
    <alloc::vec::Vec<u8> as core::ops::Drop>::drop
    demo::make_table::<'static, 16>

The collector dump names each item by the string the compiler renders for
it.  This module splits that string into the definition path (segments
without generic arguments), the concrete generic arguments in order, and
the originating crate.

The grammar is a Parsimonious PEG.  Type arguments are matched as
bracket-balanced text, so ``fn(u8) -> u8``, ``[u8; 4]`` or
``(u16, &'a str)`` survive as single arguments.

Public API
----------
    InstancePath         - parse result
    parse_instance_path  - string → InstancePath
    unit_from_path       - string → access_model.Unit
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Optional, Tuple

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from infallible_alloc.access_model import (
    GenericArg,
    GenericArgKind,
    ItemKind,
    Location,
    Unit,
)
from infallible_alloc.errors import InstancePathError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1: GRAMMAR
# ═══════════════════════════════════════════════════════════════════

INSTANCE_PATH_GRAMMAR = Grammar(r'''
    path          = segment (sep segment)*
    segment       = (qualified / ident) generics?
    sep           = "::"

    generics      = "::"? "<" _ arg_list? _ ">"
    arg_list      = arg (_ "," _ arg)* (_ ",")?
    arg           = piece+
    piece         = arrow / nested / dash / text

    qualified     = "<" _ qself qtrait? _ ">"
    qself         = qpath / qtype
    qpath         = path &(qas / (_ ">"))
    qtrait        = qas path
    qas           = ~r"\s+as\s+"
    qtype         = qtype_piece+
    qtype_piece   = arrow / nested / dash / qtype_text
    nested        = ("<" inner ">") / ("(" inner ")") / ("[" inner "]")
    inner         = inner_piece*
    inner_piece   = arrow / nested / dash / inner_text

    ident         = ~r"(r#)?[A-Za-z_][A-Za-z0-9_]*" / ~r"\{[A-Za-z_ ]+(#[0-9]+)?\}"
    arrow         = "->"
    dash          = "-"
    text          = ~r"[^<>()\[\],\-]+"
    inner_text    = ~r"[^<>()\[\]\-]+"
    qtype_text    = ~r"((?!\s+as\s)[^<>()\[\]\-])+"
    _             = ~r"\s*"
''')

_CONST_ARG = re.compile(r"^(-?[0-9][0-9_]*([a-z][a-z0-9]*)?|true|false|'.'|\{.*\})$")
_LEADING_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


# ═══════════════════════════════════════════════════════════════════
#  PART 2: PARSE TREE → SEGMENTS
# ═══════════════════════════════════════════════════════════════════

class _PathBuilder(NodeVisitor):
    """Turns the parse tree into ``[(segment_text, [arg_text, …]), …]``."""

    def generic_visit(self, node, visited_children):
        # Only named rules carry data; everything else is structure.
        return visited_children

    def visit_path(self, node, visited_children):
        first, rest = visited_children
        segments = [first]
        for _sep, segment in rest:
            segments.append(segment)
        return segments

    def visit_segment(self, node, visited_children):
        head, generics = visited_children
        name, args = head[0]
        if generics:
            args = args + generics[0]
        return name, args

    def visit_qualified(self, node, visited_children):
        # The segment keeps its text; the self type's and the trait's
        # arguments come first in the instantiation.
        _lt, _ws1, self_args, trait, _ws2, _gt = visited_children
        args = list(self_args)
        if trait:
            args.extend(trait[0])
        return node.text, args

    def visit_qself(self, node, visited_children):
        return visited_children[0]

    def visit_qpath(self, node, visited_children):
        segments, _ahead = visited_children
        return [arg for _name, args in segments for arg in args]

    def visit_qtrait(self, node, visited_children):
        _as, segments = visited_children
        return [arg for _name, args in segments for arg in args]

    def visit_qtype(self, node, visited_children):
        return []

    def visit_ident(self, node, visited_children):
        return node.text, []

    def visit_generics(self, node, visited_children):
        _colons, _lt, _ws1, arg_list, _ws2, _gt = visited_children
        return arg_list[0] if arg_list else []

    def visit_arg_list(self, node, visited_children):
        first, rest, _trailing = visited_children
        args = [first]
        for _ws1, _comma, _ws2, arg in rest:
            args.append(arg)
        return args

    def visit_arg(self, node, visited_children):
        return node.text.strip()


# ═══════════════════════════════════════════════════════════════════
#  PART 3: PUBLIC API
# ═══════════════════════════════════════════════════════════════════

def classify_arg(text: str) -> GenericArg:
    """Classify a rendered generic argument as lifetime, const or type."""
    if text.startswith("'") and not _CONST_ARG.match(text):
        return GenericArg(GenericArgKind.LIFETIME, text)
    if _CONST_ARG.match(text):
        return GenericArg(GenericArgKind.CONST, text)
    return GenericArg(GenericArgKind.TYPE, text)


@dataclass(frozen=True)
class InstancePath:
    """A parsed instance path.

    Attributes
    ----------
    text : str
        The original string.
    segments : tuple[str, ...]
        Path segments without generic arguments.
    generic_args : tuple[GenericArg, ...]
        All generic arguments, left to right.
    """

    text: str
    segments: Tuple[str, ...]
    generic_args: Tuple[GenericArg, ...]

    @property
    def def_path(self) -> str:
        return "::".join(self.segments)

    @property
    def crate(self) -> str:
        """First path segment; for ``<T as Trait>::m`` the first name inside."""
        head = self.segments[0]
        if not head.startswith("<"):
            return head
        match = _LEADING_IDENT.search(head)
        return match.group(0) if match else ""


@lru_cache(maxsize=4096)
def parse_instance_path(text: str) -> InstancePath:
    """Parse *text* into an :class:`InstancePath`.

    Raises
    ------
    InstancePathError
        If *text* does not match the path grammar.
    """
    stripped = text.strip()
    try:
        tree = INSTANCE_PATH_GRAMMAR.parse(stripped)
        segments = _PathBuilder().visit(tree)
    except ParseError as exc:
        raise InstancePathError(
            f"cannot parse instance path {text!r} at column {exc.pos + 1}",
            text=text,
            position=exc.pos,
        ) from exc
    except VisitationError as exc:
        raise InstancePathError(
            f"cannot interpret instance path {text!r}", text=text,
        ) from exc

    names = tuple(name for name, _args in segments)
    args = tuple(classify_arg(a) for _name, arg_texts in segments for a in arg_texts)
    return InstancePath(stripped, names, args)


def unit_from_path(
    text: str,
    *,
    crate: Optional[str] = None,
    is_local: bool = False,
    kind: ItemKind = ItemKind.FN,
    def_span: Optional[Location] = None,
    generic_args: Optional[List[Any]] = None,
) -> Unit:
    """Build a :class:`Unit` from a rendered instance path.

    ``crate`` and ``generic_args`` override what the path implies.
    Explicit ``generic_args`` may be :class:`GenericArg` objects or strings
    (classified like parsed arguments).
    """
    parsed = parse_instance_path(text)
    if generic_args is not None:
        args = tuple(
            a if isinstance(a, GenericArg) else classify_arg(str(a))
            for a in generic_args
        )
    else:
        args = parsed.generic_args
    return Unit(
        path=parsed.def_path,
        crate=crate if crate is not None else parsed.crate,
        generic_args=args,
        is_local=is_local,
        kind=kind,
        def_span=def_span,
        rendered=parsed.text,
    )


__all__ = [
    "INSTANCE_PATH_GRAMMAR",
    "InstancePath",
    "classify_arg",
    "parse_instance_path",
    "unit_from_path",
]
