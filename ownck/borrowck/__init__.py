# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
ownck.borrowck: ownership and borrow verification over the typed IR.

Entry points are `verify_program` / `verify_function`; the remaining modules
are the analyses they compose.
"""

from .verifier import FunctionResult, ProgramResult, verify_function, verify_program

__all__ = ["FunctionResult", "ProgramResult", "verify_function", "verify_program"]
