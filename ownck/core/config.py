# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Checker configuration shared by the verifier and the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import AnalysisLimitError


@dataclass(frozen=True)
class CheckerConfig:
	"""
	Knobs for a verification run.

	- jobs: number of worker threads used to verify independent functions
	  (1 = sequential, in program order).
	- max_iterations: optional cap on every fixpoint loop; None = unbounded.
	  Lattices are finite so the cap only matters for pathological input.
	- report_unreachable: emit advisory `UnreachableCode` warnings.
	"""

	jobs: int = 1
	max_iterations: Optional[int] = None
	report_unreachable: bool = True

	def __post_init__(self) -> None:
		if self.jobs < 1:
			raise ValueError("jobs must be >= 1")
		if self.max_iterations is not None and self.max_iterations < 1:
			raise ValueError("max_iterations must be >= 1 when set")


class IterationBudget:
	"""Counts fixpoint steps for one analysis and enforces the configured cap."""

	def __init__(self, analysis: str, limit: Optional[int]) -> None:
		self.analysis = analysis
		self.limit = limit
		self.steps = 0

	def tick(self) -> None:
		self.steps += 1
		if self.limit is not None and self.steps > self.limit:
			raise AnalysisLimitError(self.analysis, self.limit)


DEFAULT_CONFIG = CheckerConfig()

__all__ = ["CheckerConfig", "IterationBudget", "DEFAULT_CONFIG"]
