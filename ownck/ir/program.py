# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Whole-program container handed to the verifier."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ownck.core.types_core import TypeTable

from .nodes import TFunction
from .signatures import FnSignature, SignatureTable


@dataclass
class TProgram:
	"""
	Functions to verify plus everything they may call.

	`externs` are signatures of callees without a body in this program
	(intrinsics, other modules, interface methods).
	"""

	types: TypeTable
	functions: List[TFunction] = field(default_factory=list)
	externs: List[FnSignature] = field(default_factory=list)
	source: Optional[str] = None

	def signature_table(self) -> SignatureTable:
		return SignatureTable.build(self.functions, self.externs)

	def function(self, name: str) -> TFunction:
		for fn in self.functions:
			if fn.name == name:
				return fn
		raise KeyError(name)


__all__ = ["TProgram"]
