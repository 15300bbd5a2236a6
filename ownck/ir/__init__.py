# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck.ir: the typed IR contract between the front-end and the borrow checker.

Modules:
  - nodes: typed IR nodes (`TFunction`, statements, expressions)
  - signatures: callee signatures and the shared signature table
  - program: `TProgram` (type table + functions + extern signatures)
  - reader: textual IR reader built on lark
"""

__all__ = [
	"nodes",
	"signatures",
	"program",
	"reader",
]
