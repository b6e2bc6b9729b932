"""Core type definitions for codecity."""

from typing import TypeVar

from typing_extensions import TypeAliasType

T = TypeVar("T")

Copy = TypeAliasType("Copy", T, type_params=(T,))
"""Type alias indicating a value is a copy detached from engine state.

When you see `Copy[T]` in a return type, the returned value is a deep copy.
Mutating it does NOT affect the ledger or the index.
"""
