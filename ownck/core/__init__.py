# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck.core: shared primitives used across the IR and the borrow checker.

Modules:
  - span: source locations
  - diagnostics: Diagnostic/DiagnosticKind and the per-run sink
  - errors: IR contract / iteration-cap failures
  - types_core: TypeId/TypeTable primitives and duplication facts
  - config: CheckerConfig
"""

__all__ = [
	"span",
	"diagnostics",
	"errors",
	"types_core",
	"config",
]
