# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Bundler error taxonomy.

Every failure the pipeline can report is a `BundleError` subclass with a
stable reason code and enough context (file, position, symbol, stage) for the
author to fix the source. None of them are retried.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class BundleError(Exception):
	"""A structured, serializable bundling error."""

	reason_code: str
	message: str
	file: str | None = None
	line: int | None = None
	column: int | None = None
	symbol: str | None = None
	stage: str | None = None  # pipeline stage that was running when it failed

	def __str__(self) -> str:
		return self.format_human()

	def with_stage(self, stage: str) -> "BundleError":
		if self.stage is not None:
			return self
		return replace(self, stage=stage)

	def location(self) -> str | None:
		if self.file is None:
			return None
		if self.line is None:
			return self.file
		if self.column is None:
			return f"{self.file}:{self.line}"
		return f"{self.file}:{self.line}:{self.column}"

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"file": self.file,
			"line": self.line,
			"column": self.column,
			"symbol": self.symbol,
			"stage": self.stage,
		}

	def format_human(self) -> str:
		parts: list[str] = []
		loc = self.location()
		if loc:
			parts.append(f"{loc}:")
		parts.append(f"[{self.reason_code}] {self.message}")
		if self.symbol:
			parts.append(f"symbol={self.symbol}")
		if self.stage:
			parts.append(f"stage={self.stage}")
		return " ".join(parts)


@dataclass(frozen=True)
class ParseError(BundleError):
	reason_code: str = "E-PARSE"
	message: str = "malformed source"


@dataclass(frozen=True)
class UnresolvedModuleError(BundleError):
	reason_code: str = "E-MODULE"
	message: str = "declared module has no source"


@dataclass(frozen=True)
class UnresolvedReferenceError(BundleError):
	reason_code: str = "E-UNRESOLVED"
	message: str = "unresolved reference"


@dataclass(frozen=True)
class NameCollisionError(BundleError):
	reason_code: str = "E-COLLISION"
	message: str = "name collision"


@dataclass(frozen=True)
class WriteError(BundleError):
	reason_code: str = "E-WRITE"
	message: str = "cannot write output"


__all__ = [
	"BundleError",
	"NameCollisionError",
	"ParseError",
	"UnresolvedModuleError",
	"UnresolvedReferenceError",
	"WriteError",
]
