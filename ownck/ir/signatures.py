# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Callee signatures: the only interprocedural input to the borrow checker.

A call site never looks at a callee's body or internal loans; it instantiates
the callee's region parameters afresh and relates them to the argument and
result regions (see `ownck.borrowck.regions`). Signatures are immutable
snapshots so the table can be shared by concurrent verification runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from ownck.core.errors import IRContractError
from ownck.core.span import Span
from ownck.core.types_core import TypeId, TypeTable

from .nodes import TFunction

STATIC_REGION = "'static"


@dataclass(frozen=True)
class FnSignature:
	"""
	Region-annotated function signature.

	`region_params` lists the named regions a caller instantiates per call.
	`outlives` holds `('a, 'b)` pairs meaning `'a` outlives `'b`.
	Parameter/return types name their regions through the type table
	(`&'a Int`, `Holder<'a>`); `'static` needs no declaration.
	"""

	name: str
	param_types: Tuple[TypeId, ...] = ()
	return_type: Optional[TypeId] = None
	region_params: Tuple[str, ...] = ()
	outlives: Tuple[Tuple[str, str], ...] = ()
	loc: Span = Span()

	def validate(self, types: TypeTable) -> None:
		"""Reject signatures naming undeclared regions (upstream contract)."""
		declared = set(self.region_params) | {STATIC_REGION}
		for ty in (*self.param_types, self.return_type):
			for region in types.regions_in(ty):
				if region not in declared:
					raise IRContractError(
						f"signature of '{self.name}' uses undeclared region {region}", loc=self.loc
					)
		for a, b in self.outlives:
			if a not in declared or b not in declared:
				raise IRContractError(
					f"signature of '{self.name}' relates undeclared regions {a}: {b}", loc=self.loc
				)
		if types.carries_refs(self.return_type) and types.region_of(self.return_type) is None:
			if self.elided_return_region(types) is None and self.elision_source(types) is None:
				raise IRContractError(
					f"signature of '{self.name}' returns a reference without a region and it cannot be elided",
					loc=self.loc,
				)

	def elision_source(self, types: TypeTable) -> Optional[int]:
		"""
		Index of the parameter an unnamed return region is taken from.

		Elision succeeds when exactly one parameter carries references, or when
		every reference-carrying parameter names the same region.
		"""
		carrying = self._ref_params(types)
		if not carrying:
			return None
		if len(carrying) == 1:
			return carrying[0]
		regions = {types.region_of(self.param_types[i]) for i in carrying}
		if len(regions) == 1 and None not in regions:
			return carrying[0]
		return None

	def elided_return_region(self, types: TypeTable) -> Optional[str]:
		"""
		Region the result lives in: declared, or the region of the elision
		source (None if anonymous). Without any reference parameter the
		result can only point at data that outlives the call: `'static`.
		"""
		region = types.region_of(self.return_type)
		if region is not None or not types.carries_refs(self.return_type):
			return region
		if not self._ref_params(types):
			return STATIC_REGION
		src = self.elision_source(types)
		return None if src is None else types.region_of(self.param_types[src])

	def _ref_params(self, types: TypeTable) -> list[int]:
		return [i for i, t in enumerate(self.param_types) if types.carries_refs(t)]


def signature_of(fn: TFunction) -> FnSignature:
	"""Project a function declaration onto its callee-visible signature."""
	return FnSignature(
		name=fn.name,
		param_types=tuple(p.ty for p in fn.params),
		return_type=fn.return_type,
		region_params=tuple(fn.region_params),
		outlives=tuple(fn.outlives),
		loc=fn.loc,
	)


class SignatureTable(Mapping[str, FnSignature]):
	"""Read-only name → FnSignature table shared across verification runs."""

	def __init__(self, signatures: Iterable[FnSignature] = ()) -> None:
		table: dict[str, FnSignature] = {}
		for sig in signatures:
			if sig.name in table:
				raise IRContractError(f"duplicate signature for '{sig.name}'", loc=sig.loc)
			table[sig.name] = sig
		self._table = MappingProxyType(table)

	def __getitem__(self, name: str) -> FnSignature:
		return self._table[name]

	def __iter__(self) -> Iterator[str]:
		return iter(self._table)

	def __len__(self) -> int:
		return len(self._table)

	def require(self, name: str, *, loc: Span | None = None) -> FnSignature:
		"""Lookup that treats a missing call target as an IR contract violation."""
		sig = self._table.get(name)
		if sig is None:
			raise IRContractError(f"no signature for call target '{name}'", loc=loc)
		return sig

	@classmethod
	def build(cls, functions: Iterable[TFunction], externs: Iterable[FnSignature] = ()) -> "SignatureTable":
		return cls([*(signature_of(fn) for fn in functions), *externs])


__all__ = ["FnSignature", "SignatureTable", "signature_of", "STATIC_REGION"]
