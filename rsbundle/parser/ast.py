# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Item-level syntax tree for Rust source files.

Only the item structure is modelled. Signatures, bodies and macro arguments
stay as flat token lists (lark `Token`s, which carry their source offsets);
the reference scanner and the flattener work on those.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from lark import Token

from rsbundle.core.span import Span


# Item kinds as produced by the parser.
MOD = "mod"
USE = "use"
EXTERN_CRATE = "extern_crate"
EXTERN_BLOCK = "extern_block"
FN = "fn"
STRUCT = "struct"
ENUM = "enum"
TRAIT = "trait"
IMPL = "impl"
CONST = "const"
STATIC = "static"
TYPE_ALIAS = "type"
MACRO_RULES = "macro_rules"
MACRO_CALL = "macro_call"


@dataclass(frozen=True)
class Attr:
	text: str
	span: Span
	inner: bool = False
	doc: bool = False

	@property
	def compact(self) -> str:
		"""Attribute text without whitespace (`#[cfg(test)]`)."""
		return "".join(self.text.split())

	def is_test_only(self) -> bool:
		return self.compact in ("#[cfg(test)]", "#[test]")

	def is_macro_export(self) -> bool:
		return self.compact.startswith("#[macro_export")

	def path_value(self) -> Optional[str]:
		"""Value of a `#[path = "..."]` attribute, if this is one."""
		c = self.compact
		if not (c.startswith('#[path="') and c.endswith('"]')):
			return None
		return c[len('#[path="') : -2]


@dataclass(frozen=True)
class UseLeaf:
	"""
	One binding produced by a `use` tree.

	`use a::b::{c, d as e, f::*}` yields three leaves:
	`(a, b, c) -> c`, `(a, b, d) -> e` and the glob `(a, b, f, *)`.
	`self` inside a group binds the group prefix itself.
	"""

	path: Tuple[str, ...]
	name: Optional[str]  # None for globs
	glob: bool
	span: Span


@dataclass
class Item:
	kind: str
	name: Optional[str]
	span: Span
	attrs: List[Attr] = field(default_factory=list)
	vis: Optional[str] = None
	name_tok: Optional[Token] = None
	# Tokens scanned for references: everything after the defining name
	# (for impls everything after `impl`); attributes excluded.
	tokens: List[Token] = field(default_factory=list)
	# impl/trait: tokens between the keyword (or name) and the `{`.
	header: List[Token] = field(default_factory=list)
	uses: List[UseLeaf] = field(default_factory=list)
	# Inline module body or impl/trait associated items.
	items: List["Item"] = field(default_factory=list)
	inner_attrs: List[Attr] = field(default_factory=list)
	inline: bool = False
	# Item-level macro invocations.
	macro_path: Tuple[str, ...] = ()
	args: List[Token] = field(default_factory=list)
	# Structs declared with `(...)` or `;` also occupy the value namespace.
	tuple_like: bool = False
	alias: Optional[str] = None  # extern crate ... as alias
	# Foreign functions and statics declared by an `extern { ... }` block.
	declares: List[str] = field(default_factory=list)

	@property
	def test_only(self) -> bool:
		return any(a.is_test_only() for a in self.attrs)

	def attr_path(self) -> Optional[str]:
		for a in self.attrs:
			val = a.path_value()
			if val is not None:
				return val
		return None


@dataclass
class SourceFile:
	path: str
	text: str
	inner_attrs: List[Attr] = field(default_factory=list)
	items: List[Item] = field(default_factory=list)


__all__ = [
	"Attr",
	"Item",
	"SourceFile",
	"UseLeaf",
	"MOD",
	"USE",
	"EXTERN_CRATE",
	"EXTERN_BLOCK",
	"FN",
	"STRUCT",
	"ENUM",
	"TRAIT",
	"IMPL",
	"CONST",
	"STATIC",
	"TYPE_ALIAS",
	"MACRO_RULES",
	"MACRO_CALL",
]
