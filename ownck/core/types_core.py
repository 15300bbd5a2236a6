# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal type core consumed by the borrow checker.

TypeIds are opaque ints indexing into a TypeTable. The upstream type checker
owns type inference; the engine only needs enough structure to answer:
  * is a value of this type duplicated (Copy) or moved on by-value use?
  * does it carry references (and therefore a region)?
  * what is the type of `place.field`, `place[i]`, `*place`, or a variant
    payload field?
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Sequence, Tuple


TypeId = int  # opaque handle into the TypeTable


class TypeKind(Enum):
	"""Kinds of types understood by the type core."""

	SCALAR = auto()
	UNIT = auto()
	REF = auto()
	STRUCT = auto()
	VARIANT = auto()
	ARRAY = auto()
	UNKNOWN = auto()


@dataclass(frozen=True)
class TypeDef:
	"""Definition of a type stored in the TypeTable."""

	kind: TypeKind
	name: str
	param_types: Tuple[TypeId, ...] = ()
	ref_mut: bool | None = None  # only meaningful for TypeKind.REF
	region: Optional[str] = None  # region argument (refs and ref-holding aggregates)
	copy: bool = False  # declared duplication fact


class TypeTable:
	"""
	Simple type table that owns TypeIds.

	Struct and variant layouts are registered once per name; each use site
	may instantiate the aggregate with a region argument (`Holder<'a>`),
	which yields a distinct TypeId sharing the same layout.
	"""

	def __init__(self) -> None:
		self._defs: Dict[TypeId, TypeDef] = {}
		self._next_id: TypeId = 1  # reserve 0 for "invalid"
		self._intern: Dict[Tuple[object, ...], TypeId] = {}
		self._struct_fields: Dict[str, Dict[str, TypeId]] = {}
		self._variant_arms: Dict[str, Dict[str, List[TypeId]]] = {}
		self._copy_aggregates: set[str] = set()

	# Scalars -----------------------------------------------------------------

	def new_scalar(self, name: str, *, copy: bool = True) -> TypeId:
		"""Register a scalar type (e.g. Int, Bool) and return its TypeId."""
		return self._interned(("scalar", name), TypeDef(TypeKind.SCALAR, name, copy=copy))

	def ensure_int(self) -> TypeId:
		return self.new_scalar("Int")

	def ensure_bool(self) -> TypeId:
		return self.new_scalar("Bool")

	def ensure_unit(self) -> TypeId:
		return self._interned(("unit",), TypeDef(TypeKind.UNIT, "Unit", copy=True))

	def ensure_unknown(self) -> TypeId:
		"""Unknown types are never duplicable (conservative)."""
		return self._interned(("unknown",), TypeDef(TypeKind.UNKNOWN, "Unknown"))

	# References / arrays ------------------------------------------------------

	def ensure_ref(self, inner: TypeId, region: Optional[str] = None) -> TypeId:
		"""Return the shared reference type `&'region inner`."""
		return self.new_ref(inner, is_mut=False, region=region)

	def ensure_ref_mut(self, inner: TypeId, region: Optional[str] = None) -> TypeId:
		"""Return the exclusive reference type `&'region mut inner`."""
		return self.new_ref(inner, is_mut=True, region=region)

	def new_ref(self, inner: TypeId, is_mut: bool, region: Optional[str] = None) -> TypeId:
		name = "RefMut" if is_mut else "Ref"
		td = TypeDef(TypeKind.REF, name, (inner,), ref_mut=is_mut, region=region, copy=not is_mut)
		return self._interned(("ref", inner, is_mut, region), td)

	def new_array(self, elem: TypeId) -> TypeId:
		"""Register an Array<elem> type (reused when already present)."""
		return self._interned(("array", elem), TypeDef(TypeKind.ARRAY, "Array", (elem,)))

	# Aggregates ---------------------------------------------------------------

	def declare_struct(self, name: str, fields: Mapping[str, TypeId], *, copy: bool = False) -> TypeId:
		"""Register a struct layout; returns the region-less instance."""
		if name in self._struct_fields or name in self._variant_arms:
			raise ValueError(f"type '{name}' already declared")
		self._struct_fields[name] = dict(fields)
		if copy:
			self._copy_aggregates.add(name)
		return self.struct_type(name)

	def struct_type(self, name: str, region: Optional[str] = None) -> TypeId:
		"""Instantiate a declared struct with an optional region argument."""
		if name not in self._struct_fields:
			raise KeyError(f"unknown struct '{name}'")
		td = TypeDef(TypeKind.STRUCT, name, region=region, copy=name in self._copy_aggregates)
		return self._interned(("struct", name, region), td)

	def declare_variant(
		self,
		name: str,
		arms: Mapping[str, Sequence[TypeId]],
		*,
		copy: bool = False,
	) -> TypeId:
		"""Register a tagged union; payload fields are addressed positionally ("0", "1", ...)."""
		if name in self._struct_fields or name in self._variant_arms:
			raise ValueError(f"type '{name}' already declared")
		self._variant_arms[name] = {arm: list(payload) for arm, payload in arms.items()}
		if copy:
			self._copy_aggregates.add(name)
		return self.variant_type(name)

	def variant_type(self, name: str, region: Optional[str] = None) -> TypeId:
		if name not in self._variant_arms:
			raise KeyError(f"unknown variant type '{name}'")
		td = TypeDef(TypeKind.VARIANT, name, region=region, copy=name in self._copy_aggregates)
		return self._interned(("variant", name, region), td)

	def has_struct(self, name: str) -> bool:
		return name in self._struct_fields

	def has_variant(self, name: str) -> bool:
		return name in self._variant_arms

	def struct_fields(self, name: str) -> Dict[str, TypeId]:
		return dict(self._struct_fields[name])

	def variant_arms(self, name: str) -> Dict[str, List[TypeId]]:
		return {arm: list(p) for arm, p in self._variant_arms[name].items()}

	# Queries ------------------------------------------------------------------

	def get(self, ty: TypeId) -> TypeDef:
		"""Fetch the TypeDef for a given TypeId."""
		return self._defs[ty]

	def is_copy(self, ty: Optional[TypeId]) -> bool:
		"""
		Return True if values of `ty` are duplicated instead of moved.

		Scalars, Unit and shared references are Copy; exclusive references,
		arrays and Unknown are move-only; aggregates are Copy only when
		declared so.
		"""
		if ty is None:
			return False
		return self.get(ty).copy

	def carries_refs(self, ty: Optional[TypeId]) -> bool:
		"""True when a value of `ty` may hold a reference (and so needs a region)."""
		return ty is not None and self._carries_refs(ty, set())

	def _carries_refs(self, ty: TypeId, seen: set[str]) -> bool:
		td = self.get(ty)
		if td.kind is TypeKind.REF:
			return True
		if td.kind is TypeKind.ARRAY:
			return self._carries_refs(td.param_types[0], seen)
		if td.kind in (TypeKind.STRUCT, TypeKind.VARIANT):
			if td.region is not None:
				return True
			if td.name in seen:
				return False
			seen = seen | {td.name}
			if td.kind is TypeKind.STRUCT:
				return any(self._carries_refs(f, seen) for f in self._struct_fields[td.name].values())
			return any(
				self._carries_refs(p, seen) for payload in self._variant_arms[td.name].values() for p in payload
			)
		return False

	def region_of(self, ty: Optional[TypeId]) -> Optional[str]:
		"""Declared region argument of a reference or aggregate type, if any."""
		if ty is None:
			return None
		td = self.get(ty)
		if td.kind is TypeKind.ARRAY:
			return self.region_of(td.param_types[0])
		return td.region

	def regions_in(self, ty: Optional[TypeId]) -> Tuple[str, ...]:
		"""Every region named anywhere in `ty`, outermost first (`&'a Holder<'b>` → 'a, 'b)."""
		out: List[str] = []
		if ty is not None:
			region = self.region_of(ty)
			if region is not None:
				out.append(region)
			for inner in self.nested_regions(ty):
				if inner not in out:
					out.append(inner)
		return tuple(out)

	def nested_regions(self, ty: Optional[TypeId]) -> Tuple[str, ...]:
		"""Regions named below the outermost one: those of a reference's pointee."""
		if ty is None:
			return ()
		td = self.get(ty)
		if td.kind is TypeKind.ARRAY:
			return self.nested_regions(td.param_types[0])
		if td.kind is TypeKind.REF:
			return self.regions_in(td.param_types[0])
		return ()

	def pointee(self, ty: TypeId) -> Optional[TypeId]:
		td = self.get(ty)
		if td.kind is TypeKind.REF:
			return td.param_types[0]
		return None

	def element_type(self, ty: TypeId) -> Optional[TypeId]:
		td = self.get(ty)
		if td.kind is TypeKind.ARRAY:
			return td.param_types[0]
		return None

	def field_type(self, ty: TypeId, name: str) -> Optional[TypeId]:
		td = self.get(ty)
		if td.kind is not TypeKind.STRUCT:
			return None
		return self._struct_fields[td.name].get(name)

	def variant_field_type(self, ty: TypeId, variant: str, field: str) -> Optional[TypeId]:
		td = self.get(ty)
		if td.kind is not TypeKind.VARIANT:
			return None
		payload = self._variant_arms[td.name].get(variant)
		if payload is None:
			return None
		try:
			idx = int(field)
		except ValueError:
			return None
		if idx < 0 or idx >= len(payload):
			return None
		return payload[idx]

	def describe(self, ty: Optional[TypeId]) -> str:
		"""Human-readable rendering (`&'a mut Int`, `Holder<'a>`, `[Int]`)."""
		if ty is None:
			return "?"
		td = self.get(ty)
		if td.kind is TypeKind.REF:
			region = f"{td.region} " if td.region else ""
			mut = "mut " if td.ref_mut else ""
			return f"&{region}{mut}{self.describe(td.param_types[0])}"
		if td.kind is TypeKind.ARRAY:
			return f"[{self.describe(td.param_types[0])}]"
		if td.kind in (TypeKind.STRUCT, TypeKind.VARIANT) and td.region:
			return f"{td.name}<{td.region}>"
		return td.name

	def _interned(self, key: Tuple[object, ...], td: TypeDef) -> TypeId:
		existing = self._intern.get(key)
		if existing is not None:
			return existing
		ty_id = self._next_id
		self._next_id += 1
		self._defs[ty_id] = td
		self._intern[key] = ty_id
		return ty_id


__all__ = ["TypeId", "TypeKind", "TypeDef", "TypeTable"]
