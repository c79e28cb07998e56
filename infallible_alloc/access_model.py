"""
infallible_alloc.access_model
=============================

Normalizes the collector's raw accessor → accessees multimap into typed
call-graph nodes and call-site triples.

The collector enumerates every item that is code-generated for the crate
under analysis (eagerly, so dead code is included) together with the items
each of them accesses.  An item is a function instance, a static, or a
piece of global assembly.  Only functions and statics become graph nodes.

Nodes
-----
``Unit``
    A function instance or a static.  Identity is the definition path,
    the originating crate, the item kind and the concrete generic
    arguments, so ``Vec::<u8>::push`` and ``Vec::<u32>::push`` are two
    distinct units.  Units are immutable; they are only ever inserted into
    sets and dicts.

Raw input
---------
``MonoItem`` / ``Access`` / ``AccessMap``
    The collector output.  ``AccessMap.iter_accesses()`` yields accessor
    items with their ordered accessees.

Normalized output
-----------------
``normalize_accesses(access_map)`` yields ``RawAccess(caller, callee,
location)`` triples.  No allocation reasoning happens here.

Typical usage::

    from infallible_alloc.access_model import (
        Access, AccessMap, GenericArg, MonoItem, Unit, normalize_accesses)

    amap = AccessMap()
    main = Unit("demo::main", crate="demo", is_local=True)
    push = Unit("alloc::vec::Vec::push", crate="alloc",
                generic_args=(GenericArg.type_("u8"),))
    amap.add(MonoItem.fn(main), [Access(MonoItem.fn(push), None)])
    for triple in normalize_accesses(amap):
        print(triple)
"""

from __future__ import annotations

import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Item kinds
# ---------------------------------------------------------------------------

class ItemKind(enum.Enum):
    """What a collected item is."""

    FN = "fn"                  # A function instance
    STATIC = "static"          # A static initializer
    GLOBAL_ASM = "asm"         # Global assembly; never becomes a node

    @property
    def is_node(self) -> bool:
        """Whether items of this kind become call-graph nodes."""
        return self in (ItemKind.FN, ItemKind.STATIC)


class GenericArgKind(enum.Enum):
    TYPE = "type"
    CONST = "const"
    LIFETIME = "lifetime"


@dataclass(frozen=True)
class GenericArg:
    """One concrete generic argument of an instantiation."""

    kind: GenericArgKind
    text: str

    @property
    def is_erasable(self) -> bool:
        # Lifetimes are erased before code generation.
        return self.kind is GenericArgKind.LIFETIME

    @classmethod
    def type_(cls, text: str) -> GenericArg:
        return cls(GenericArgKind.TYPE, text)

    @classmethod
    def const(cls, text: str) -> GenericArg:
        return cls(GenericArgKind.CONST, text)

    @classmethod
    def lifetime(cls, text: str) -> GenericArg:
        return cls(GenericArgKind.LIFETIME, text)

    def __str__(self) -> str:
        return self.text


# ---------------------------------------------------------------------------
# Source locations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Location:
    """A source span.  Coordinates are 1-based; 0 means unknown."""

    file: str = ""
    line: int = 0
    column: int = 0
    end_line: int = 0
    end_column: int = 0

    @property
    def is_dummy(self) -> bool:
        """True for the placeholder span the collector reports when it has none."""
        return not self.file and self.line == 0

    def __str__(self) -> str:
        if self.is_dummy:
            return "<unknown>"
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


DUMMY_LOCATION = Location()


# ---------------------------------------------------------------------------
# Unit
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Unit:
    """A call-graph node: a function instance or a static.

    Attributes
    ----------
    path : str
        Definition path without generic arguments, e.g.
        ``alloc::vec::Vec::push``.  This is the text matched by the seed
        rules.
    crate : str
        The crate the definition originates from.
    generic_args : tuple[GenericArg, ...]
        Concrete instantiation.  Empty for non-generic items and statics.
    is_local : bool
        Whether the definition belongs to the crate under analysis.
    kind : ItemKind
        ``FN`` or ``STATIC``.
    def_span : Location or None
        Definition span, used to synthesize call-site spans.  Not part of
        the identity.
    rendered : str or None
        Fully-resolved instance string supplied by the collector.  Not part
        of the identity.
    """

    path: str
    crate: str = ""
    generic_args: Tuple[GenericArg, ...] = ()
    is_local: bool = False
    kind: ItemKind = ItemKind.FN
    def_span: Optional[Location] = field(default=None, compare=False)
    rendered: Optional[str] = field(default=None, compare=False)

    @property
    def is_generic(self) -> bool:
        """At least one non-erasable (type or const) generic argument."""
        return any(not arg.is_erasable for arg in self.generic_args)

    def def_path_str(self) -> str:
        """Identity text without the instantiation."""
        return self.path

    def display(self) -> str:
        """Identity text with the instantiation, for diagnostics."""
        if self.rendered:
            return self.rendered
        args = [arg.text for arg in self.generic_args if not arg.is_erasable]
        if not args:
            return self.path
        return f"{self.path}::<{', '.join(args)}>"

    def mono(self) -> Unit:
        """The non-generic instance of this definition (used for statics)."""
        if not self.generic_args and self.kind is ItemKind.STATIC:
            return self
        return replace(self, generic_args=(), kind=ItemKind.STATIC)

    def __str__(self) -> str:
        return self.display()


# ---------------------------------------------------------------------------
# Raw collector output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MonoItem:
    """An item as enumerated by the collector.

    ``unit`` is set for functions and statics; global assembly only has a
    ``name``.
    """

    kind: ItemKind
    unit: Optional[Unit] = None
    name: str = ""

    @classmethod
    def fn(cls, unit: Unit) -> MonoItem:
        return cls(ItemKind.FN, unit, unit.path)

    @classmethod
    def static(cls, unit: Unit) -> MonoItem:
        return cls(ItemKind.STATIC, unit, unit.path)

    @classmethod
    def global_asm(cls, name: str) -> MonoItem:
        return cls(ItemKind.GLOBAL_ASM, None, name)

    def to_unit(self) -> Optional[Unit]:
        """Map a function or static to its node; ``None`` for anything else."""
        if self.unit is None:
            return None
        if self.kind is ItemKind.FN:
            return self.unit
        if self.kind is ItemKind.STATIC:
            return self.unit.mono()
        return None


class Access(NamedTuple):
    """One accessee of an accessor, with the span of the access if known."""

    item: MonoItem
    location: Optional[Location] = None


class AccessMap:
    """The collector's accessor → accessees multimap.

    Accessors keep insertion order.  Adding the same accessor twice
    extends its accessee list.
    """

    def __init__(self) -> None:
        self._accesses: "OrderedDict[MonoItem, List[Access]]" = OrderedDict()

    def add(self, accessor: MonoItem, accessees: Iterable[Access]) -> None:
        self._accesses.setdefault(accessor, []).extend(
            a if isinstance(a, Access) else Access(*a) for a in accessees
        )

    def iter_accesses(self) -> Iterator[Tuple[MonoItem, Sequence[Access]]]:
        for accessor, accessees in self._accesses.items():
            yield accessor, accessees

    def __len__(self) -> int:
        return len(self._accesses)

    def __contains__(self, item: object) -> bool:
        return item in self._accesses

    def __repr__(self) -> str:
        n_edges = sum(len(v) for v in self._accesses.values())
        return f"AccessMap(accessors={len(self._accesses)}, accesses={n_edges})"


class RawAccess(NamedTuple):
    """A normalized call-site triple.  ``location`` may still be missing."""

    caller: Unit
    callee: Unit
    location: Optional[Location]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize_accesses(access_map: AccessMap) -> Iterator[RawAccess]:
    """Yield ``(caller, callee, location)`` triples from *access_map*.

    Accessors that are not functions or statics are skipped.  When an
    accessee is not a function or static, the rest of that accessor's
    accessees are abandoned; triples already yielded for it stand.
    """
    for accessor, accessees in access_map.iter_accesses():
        caller = accessor.to_unit()
        if caller is None:
            logger.debug("skipping non-callable accessor %s", accessor.name)
            continue

        logger.debug("%s: %d accessee(s)", caller.display(), len(accessees))
        for index, access in enumerate(accessees):
            callee = access.item.to_unit()
            if callee is None:
                logger.debug(
                    "truncating accesses of %s at %d/%d: %s is not callable",
                    caller.display(), index, len(accessees), access.item.name,
                )
                break
            yield RawAccess(caller, callee, access.location)


__all__ = [
    "ItemKind",
    "GenericArgKind",
    "GenericArg",
    "Location",
    "DUMMY_LOCATION",
    "Unit",
    "MonoItem",
    "Access",
    "AccessMap",
    "RawAccess",
    "normalize_accesses",
]
