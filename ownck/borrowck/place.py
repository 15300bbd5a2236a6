# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place model: the "where" of values (bindings + projections).

A Place is a root binding followed by field/index/deref/downcast projections,
so `s.items[i]` becomes root `s` with projections `.items`, `[?]`. Every other
component asks one question of this module: how do two places relate?

  * DISJOINT: provably different storage.
  * EQUAL:    the same storage (or possibly the same, for unknown indices).
  * PREFIX:   the first place contains the second (`x` vs `x.f`).
  * EXTENDS:  the second place contains the first (`x.f` vs `x`).

Anything but DISJOINT is a conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Tuple

from ownck.ir import nodes as T


class IndexKind(Enum):
	"""Coarse-grained index classification to keep Place hashable."""

	ANY = auto()       # Unknown / non-constant index; conservatively overlaps.
	CONST = auto()     # Known constant index.


@dataclass(frozen=True)
class FieldProj:
	"""Field access projection (e.g., `.name`)."""

	name: str

	def render(self) -> str:
		return f".{self.name}"


@dataclass(frozen=True)
class IndexProj:
	"""
	Index projection (e.g., `[i]`).

	Index values are not tracked; only literal indices keep their value so
	`a[0]` and `a[1]` can be told apart.
	"""

	kind: IndexKind
	value: Optional[int] = None

	def render(self) -> str:
		return f"[{self.value}]" if self.kind is IndexKind.CONST else "[_]"


@dataclass(frozen=True)
class DerefProj:
	"""Dereference projection (`*p`)."""

	def render(self) -> str:
		return "*"


@dataclass(frozen=True)
class DowncastProj:
	"""Selects the payload of one variant of a tagged union."""

	variant: str

	def render(self) -> str:
		return f" as {self.variant}"


Projection = FieldProj | IndexProj | DerefProj | DowncastProj


@dataclass(frozen=True)
class Place:
	"""
	A borrowable/moveable storage location.

	`root` is the binding id, `name` is kept for messages only and does not
	participate in equality.
	"""

	root: T.BindingId
	projections: Tuple[Projection, ...] = ()
	name: str = field(default="", compare=False)

	def with_projection(self, proj: Projection) -> "Place":
		"""Return a new Place with an additional projection appended."""
		return Place(self.root, self.projections + (proj,), self.name)

	def prefixes(self) -> Tuple["Place", ...]:
		"""All prefixes from the bare root up to (and including) self."""
		return tuple(Place(self.root, self.projections[:n], self.name) for n in range(len(self.projections) + 1))

	def parent(self) -> Optional["Place"]:
		if not self.projections:
			return None
		return Place(self.root, self.projections[:-1], self.name)

	def is_root(self) -> bool:
		return not self.projections

	def through_deref(self) -> bool:
		"""True when the place reaches its storage through a reference."""
		return any(isinstance(p, DerefProj) for p in self.projections)

	def is_exact(self) -> bool:
		"""False when an unknown index makes the place stand for several elements."""
		return not any(isinstance(p, IndexProj) and p.kind is IndexKind.ANY for p in self.projections)

	def render(self) -> str:
		"""Source-like rendering used in diagnostics (`(*r).f`, `a[_]`, `(o as Some).0`)."""
		text = self.name or f"_{self.root}"
		for proj in self.projections:
			if isinstance(proj, DerefProj):
				text = f"(*{text})"
			elif isinstance(proj, DowncastProj):
				text = f"({text}{proj.render()})"
			else:
				text += proj.render()
		return text


class PlaceRelation(Enum):
	DISJOINT = auto()
	EQUAL = auto()
	PREFIX = auto()   # left is a proper prefix of right
	EXTENDS = auto()  # right is a proper prefix of left


def _projections_disjoint(pa: Projection, pb: Projection) -> bool:
	"""
	Compare two projections at the same depth.

	Returns True when they provably select different storage, False when they
	select the same (or possibly the same) storage.
	"""
	if pa == pb:
		return False
	if isinstance(pa, FieldProj) and isinstance(pb, FieldProj):
		return True
	if isinstance(pa, DowncastProj) and isinstance(pb, DowncastProj):
		return True
	if isinstance(pa, IndexProj) and isinstance(pb, IndexProj):
		if pa.kind is IndexKind.CONST and pb.kind is IndexKind.CONST:
			return pa.value != pb.value
		# ANY against anything: possibly equal.
		return False
	# Projection-kind mismatch at the same depth: assume overlap.
	return False


def compare_places(a: Place, b: Place) -> PlaceRelation:
	"""
	Relate two places.

	Different roots never overlap. Otherwise walk the common projection
	prefix: the first step that provably selects different storage makes the
	places disjoint; steps that only *might* be equal (unknown indices) are
	treated as equal and the walk continues.
	"""
	if a.root != b.root:
		return PlaceRelation.DISJOINT
	ap = a.projections
	bp = b.projections
	for pa, pb in zip(ap, bp):
		if _projections_disjoint(pa, pb):
			return PlaceRelation.DISJOINT
	if len(ap) == len(bp):
		return PlaceRelation.EQUAL
	return PlaceRelation.PREFIX if len(ap) < len(bp) else PlaceRelation.EXTENDS


def places_conflict(a: Place, b: Place) -> bool:
	"""Return True when two places may refer to overlapping storage."""
	return compare_places(a, b) is not PlaceRelation.DISJOINT


def _index_proj(index: T.TExpr) -> IndexProj:
	if isinstance(index, T.TLiteralInt):
		return IndexProj(IndexKind.CONST, int(index.value))
	return IndexProj(IndexKind.ANY)


def place_from_expr(expr: T.TExpr) -> Optional[Place]:
	"""
	Construct a `Place` from an IR expression when the expression is a place.

	Returns None for rvalues (borrows, calls, literals, constructors, ...).
	"""
	if isinstance(expr, T.TVar):
		return Place(expr.binding_id, (), expr.name)
	if isinstance(expr, T.TField):
		base = place_from_expr(expr.subject)
		return None if base is None else base.with_projection(FieldProj(expr.name))
	if isinstance(expr, T.TIndex):
		base = place_from_expr(expr.subject)
		return None if base is None else base.with_projection(_index_proj(expr.index))
	if isinstance(expr, T.TDeref):
		base = place_from_expr(expr.subject)
		return None if base is None else base.with_projection(DerefProj())
	if isinstance(expr, T.TVariantField):
		base = place_from_expr(expr.subject)
		if base is None:
			return None
		return base.with_projection(DowncastProj(expr.variant)).with_projection(FieldProj(expr.field))
	return None


__all__ = [
	"IndexKind",
	"FieldProj",
	"IndexProj",
	"DerefProj",
	"DowncastProj",
	"Projection",
	"Place",
	"PlaceRelation",
	"compare_places",
	"places_conflict",
	"place_from_expr",
]
