# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Structured diagnostics produced by the verification engine.

Every violation the engine can prove is one of five kinds. Each diagnostic
carries a primary span (where the offending access happens) plus zero or more
related spans (the earlier move, the conflicting loan, the scope end) so a
renderer can point at both ends of the conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple

from .span import Span


class DiagnosticKind(Enum):
	"""Violation categories reported by the borrow checker."""

	USE_AFTER_MOVE = "UseAfterMove"
	USE_OF_UNINITIALIZED = "UseOfUninitialized"
	CONFLICTING_BORROW = "ConflictingBorrow"
	USE_WHILE_BORROWED = "UseWhileBorrowed"
	DANGLING_REFERENCE = "DanglingReference"
	# Advisory only; never affects acceptance.
	UNREACHABLE_CODE = "UnreachableCode"


@dataclass(frozen=True)
class RelatedSpan:
	"""A secondary location attached to a diagnostic (e.g. "value moved here")."""

	span: Span
	label: str


@dataclass
class Diagnostic:
	"""Represents a borrow-check diagnostic (error or advisory warning)."""

	message: str
	kind: DiagnosticKind | None = None
	phase: str | None = "borrowcheck"
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	related: List[RelatedSpan] = field(default_factory=list)
	notes: List[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	@property
	def code(self) -> str | None:
		return self.kind.value if self.kind is not None else None

	@property
	def is_error(self) -> bool:
		return self.severity == "error"

	def dedup_key(self) -> Tuple[Any, ...]:
		"""Identity used to drop repeated reports of the same violation."""
		return (self.kind, self.message, self.span, tuple(self.related))

	def to_json(self) -> Dict[str, Any]:
		"""Render to a JSON-friendly dict (phase/message/severity/file/line/column)."""
		return {
			"phase": self.phase,
			"kind": self.code,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"related": [
				{"label": r.label, "file": r.span.file, "line": r.span.line, "column": r.span.column}
				for r in self.related
			],
			"notes": list(self.notes),
		}


class DiagnosticSink:
	"""
	Per-run collector for diagnostics.

	Dataflow passes may visit the same statement more than once while iterating
	to a fixpoint; the sink drops exact duplicates so each violation is reported
	once, in first-seen order.
	"""

	def __init__(self) -> None:
		self._items: List[Diagnostic] = []
		self._seen: set[Tuple[Any, ...]] = set()

	def emit(self, diag: Diagnostic) -> None:
		key = diag.dedup_key()
		if key in self._seen:
			return
		self._seen.add(key)
		self._items.append(diag)

	def error(
		self,
		kind: DiagnosticKind,
		message: str,
		span: Span | None = None,
		related: List[RelatedSpan] | None = None,
	) -> None:
		self.emit(Diagnostic(message=message, kind=kind, span=span or Span(), related=list(related or [])))

	def warning(self, kind: DiagnosticKind, message: str, span: Span | None = None) -> None:
		self.emit(Diagnostic(message=message, kind=kind, severity="warning", span=span or Span()))

	@property
	def items(self) -> List[Diagnostic]:
		return list(self._items)

	def errors(self) -> List[Diagnostic]:
		return [d for d in self._items if d.is_error]

	def warnings(self) -> List[Diagnostic]:
		return [d for d in self._items if not d.is_error]

	def __len__(self) -> int:
		return len(self._items)


__all__ = ["Diagnostic", "DiagnosticKind", "DiagnosticSink", "RelatedSpan"]
