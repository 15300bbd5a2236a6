# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Internal-invariant failures.

These are not user diagnostics: they signal that an upstream collaborator
(front-end, type checker, signature table) handed the engine input that breaks
the IR contract, or that a fixpoint exceeded its configured iteration cap. The
verifier aborts the affected function and records the error instead of
guessing.
"""

from __future__ import annotations

from .span import Span


class IRContractError(ValueError):
	"""Malformed or incomplete IR (unknown binding, missing callee signature, ...)."""

	def __init__(self, message: str, *, loc: Span | None = None) -> None:
		super().__init__(message)
		self.loc = loc or Span()


class AnalysisLimitError(RuntimeError):
	"""A fixpoint did not converge within `CheckerConfig.max_iterations`."""

	def __init__(self, analysis: str, limit: int) -> None:
		super().__init__(f"{analysis} did not converge within {limit} iterations")
		self.analysis = analysis
		self.limit = limit


__all__ = ["IRContractError", "AnalysisLimitError"]
