# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck: ownership and borrow verification for a typed, desugared IR.

Packages:
  core:     spans, diagnostics, errors, type table, checker configuration
  ir:       typed IR nodes consumed from the front-end, callee signatures,
            and a textual IR reader used by tests and the CLI
  borrowck: place model, CFG builder, move tracker, borrow lattice,
            region solver and the per-function verifier
"""

__all__ = ["core", "ir", "borrowck"]
