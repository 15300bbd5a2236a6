# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source span representation used by diagnostics.

A Span carries best-effort file/line/column info for an IR node. The
front-end may attach its own location object via `raw`; the engine never
inspects it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column plus raw loc)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None
	raw: Any = None

	@classmethod
	def from_loc(cls, loc: Any) -> "Span":
		"""
		Construct a Span from a parser/location object.

		If `loc` is already a Span, it is returned unchanged. lark tokens and
		trees (with `propagate_positions=True`) expose `line`/`column` and
		`end_line`/`end_column`, which is what the IR reader feeds in here.
		"""
		if loc is None:
			return cls()
		if isinstance(loc, cls):
			return loc
		meta = getattr(loc, "meta", None)
		if meta is not None and not getattr(meta, "empty", True):
			loc = meta
		return cls(
			file=getattr(loc, "file", None) or getattr(loc, "filename", None) or None,
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
			raw=None,
		)

	@property
	def is_known(self) -> bool:
		"""True when the span points at a real source line."""
		return self.line is not None

	def with_file(self, file: Optional[str]) -> "Span":
		if file is None or self.file is not None:
			return self
		return Span(file, self.line, self.column, self.end_line, self.end_column, self.raw)

	def describe(self) -> str:
		"""Render as `file:line:column` with `?` for unknown parts."""
		file = self.file or "<ir>"
		line = self.line if self.line is not None else "?"
		column = self.column if self.column is not None else "?"
		return f"{file}:{line}:{column}"


__all__ = ["Span"]
