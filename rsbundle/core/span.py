# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source span representation used by error reporting.

A Span carries the file plus best-effort line/column info taken from lark
tokens or tree metadata, and the character offsets of the covered text so
later stages can slice the original source.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (file, 1-based line/column, 0-based offsets)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None
	start_pos: Optional[int] = None
	end_pos: Optional[int] = None

	@classmethod
	def from_loc(cls, loc: Any, *, file: Optional[str] = None) -> "Span":
		"""Construct a Span from a lark `Token` or `Tree.meta`."""
		if loc is None:
			return cls(file=file)
		return cls(
			file=file,
			line=getattr(loc, "line", None),
			column=getattr(loc, "column", None),
			end_line=getattr(loc, "end_line", None),
			end_column=getattr(loc, "end_column", None),
			start_pos=getattr(loc, "start_pos", None),
			end_pos=getattr(loc, "end_pos", None),
		)


__all__ = ["Span"]
