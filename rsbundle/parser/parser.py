# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
lark front end: turns Rust source text into the item-level AST.

The grammar lives beside this module in `grammar.lark`. Two parsers share
it: the file parser (start rule `start`) and a fragment parser for `use`
statements that appear inside function bodies (start rule `use_item`).
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from rsbundle.core.errors import ParseError
from rsbundle.core.span import Span
from rsbundle.parser import ast as A

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text(encoding="utf-8")

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
	keep_all_tokens=True,
)

_USE_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="use_item",
	propagate_positions=True,
	maybe_placeholders=False,
	keep_all_tokens=True,
)

_KIND_BY_RULE = {
	"mod_item": A.MOD,
	"use_item": A.USE,
	"extern_crate_item": A.EXTERN_CRATE,
	"extern_block_item": A.EXTERN_BLOCK,
	"fn_item": A.FN,
	"struct_item": A.STRUCT,
	"enum_item": A.ENUM,
	"trait_item": A.TRAIT,
	"impl_item": A.IMPL,
	"const_item": A.CONST,
	"static_item": A.STATIC,
	"type_item": A.TYPE_ALIAS,
	"macro_item": A.MACRO_CALL,
}


def parse_source(text: str, path: str) -> A.SourceFile:
	"""
	Parse one Rust file.

	Raises `ParseError` carrying the file and the 1-based position of the
	offending token. There is no error recovery: the first failure aborts.
	"""
	try:
		tree = _PARSER.parse(_blank_nested_comments(text))
	except UnexpectedInput as err:
		raise _parse_error(err, path) from err
	return _Builder(text, path).build_file(tree)


def parse_use_fragment(text: str, path: str, *, line: Optional[int] = None) -> List[A.UseLeaf]:
	"""
	Parse a single `use ...;` statement (as found inside a function body).

	`line` is the line of the statement in its file; it only feeds error
	positions and spans.
	"""
	try:
		tree = _USE_PARSER.parse(text)
	except UnexpectedInput as err:
		exc = _parse_error(err, path)
		if line is not None and exc.line is not None:
			exc = ParseError(message=exc.message, file=path, line=line + exc.line - 1, column=exc.column)
		raise exc from err
	builder = _Builder(text, path)
	leaves = builder.use_leaves(tree)
	if line is None:
		return leaves
	span = Span(file=path, line=line)
	return [A.UseLeaf(leaf.path, leaf.name, leaf.glob, span) for leaf in leaves]


def _parse_error(err: UnexpectedInput, path: str) -> ParseError:
	line = getattr(err, "line", None)
	column = getattr(err, "column", None)
	if isinstance(line, int) and line < 1:
		line = None
		column = None
	if isinstance(err, UnexpectedToken):
		tok = err.token
		if tok.type == "$END":
			msg = "unexpected end of file"
		else:
			msg = f"unexpected token {tok.value!r}"
	elif isinstance(err, UnexpectedCharacters):
		msg = f"unexpected character {err.char!r}"
	elif isinstance(err, UnexpectedEOF):
		msg = "unexpected end of file"
	else:
		msg = "malformed source"
	return ParseError(message=msg, file=path, line=line, column=column)


# Lexemes skipped whole while looking for `/*`; identifiers keep `r`/`b` prefixes honest.
_OPAQUE = re.compile(
	r"""b?r(?:"[^"]*"|#"[\s\S]*?"#|##"[\s\S]*?"##|###"[\s\S]*?"###)"""
	r'|b?"(?:[^"\\]|\\[\s\S])*"'
	r"""|b?'(?:[^'\\\n]|\\(?:x[0-9a-fA-F]{2}|u\{[0-9a-fA-F]{1,6}\}|[^\n]))'"""
	r"""|[A-Za-z_][A-Za-z0-9_]*|//[^\n]*|/\*"""
)


def _block_comment_end(text: str, start: int) -> Tuple[int, bool]:
	"""End offset of the block comment opened at `start` and whether it nests."""
	depth = 0
	nested = False
	i = start
	while i < len(text):
		if text.startswith("/*", i):
			depth += 1
			nested = nested or depth > 1
			i += 2
		elif text.startswith("*/", i):
			depth -= 1
			i += 2
			if depth == 0:
				return i, nested
		else:
			i += 1
	# unterminated: left for the lexer to report
	return len(text), False


def _blank_nested_comments(text: str) -> str:
	"""
	Replace nested block comments with whitespace.

	The lexer's comment terminal cannot count nesting. Newlines are kept and
	every other character becomes a space, so offsets and line numbers stay
	valid for the original text.
	"""
	if "/*" not in text:
		return text
	out: List[str] = []
	pos = 0
	i = 0
	while True:
		m = _OPAQUE.search(text, i)
		if m is None:
			break
		if m.group() != "/*":
			i = m.end()
			continue
		end, nested = _block_comment_end(text, m.start())
		if nested:
			out.append(text[pos : m.start()])
			out.append(re.sub(r"[^\n]", " ", text[m.start() : end]))
			pos = end
		i = end
	out.append(text[pos:])
	return "".join(out)


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	return node.type


def _leaves(node: Tree | Token) -> List[Token]:
	"""All tokens under `node`, in source order."""
	out: List[Token] = []
	stack: list = [node]
	while stack:
		cur = stack.pop()
		if isinstance(cur, Token):
			out.append(cur)
			continue
		stack.extend(reversed(cur.children))
	return out


class _Builder:
	def __init__(self, text: str, path: str) -> None:
		self.text = text
		self.path = path

	def span(self, node: Tree | Token) -> Span:
		if isinstance(node, Token):
			return Span.from_loc(node, file=self.path)
		return Span.from_loc(node.meta, file=self.path)

	def slice(self, node: Tree) -> str:
		return self.text[node.meta.start_pos : node.meta.end_pos]

	def build_file(self, tree: Tree) -> A.SourceFile:
		inner, items = self.build_block(tree.children)
		return A.SourceFile(path=self.path, text=self.text, inner_attrs=inner, items=items)

	def build_block(self, children: list) -> Tuple[List[A.Attr], List[A.Item]]:
		inner: List[A.Attr] = []
		items: List[A.Item] = []
		for child in children:
			if not isinstance(child, Tree):
				continue
			kind = _name(child)
			if kind == "inner_attr":
				inner.append(self.attr(child, inner=True))
			elif kind == "item":
				items.append(self.build_item(child))
		return inner, items

	def attr(self, node: Tree, *, inner: bool) -> A.Attr:
		first = node.children[0]
		if isinstance(first, Token) and first.type.endswith("DOC"):
			return A.Attr(text=first.value, span=self.span(first), inner=inner, doc=True)
		return A.Attr(text=self.slice(node), span=self.span(node), inner=inner, doc=False)

	def build_item(self, node: Tree) -> A.Item:
		attrs: List[A.Attr] = []
		vis: Optional[str] = None
		body: Optional[Tree] = None
		for child in node.children:
			kind = _name(child)
			if kind == "outer_attr":
				attrs.append(self.attr(child, inner=False))
			elif kind == "vis":
				vis = " ".join(self.slice(child).split())
			else:
				body = child
		assert body is not None, "item without body"
		rule = _name(body)
		item = A.Item(kind=_KIND_BY_RULE[rule], name=None, span=self.span(node), attrs=attrs, vis=vis)
		getattr(self, f"_build_{rule}")(item, body)
		return item

	# ---- per-kind builders ----

	def _named(self, item: A.Item, body: Tree, keyword: str) -> None:
		"""Common shape `<keyword> NAME ...`: name plus the tokens after it."""
		children = body.children
		idx = next(
			i for i, c in enumerate(children) if isinstance(c, Token) and c.type == keyword
		)
		name_idx = idx + 1
		name_tok = children[name_idx]
		if keyword == "STATIC" and name_tok.value == "mut":
			rest = _leaves_of(children[name_idx + 1 :])
			name_tok = rest[0]
			item.tokens = rest[1:]
		else:
			item.tokens = _leaves_of(children[name_idx + 1 :])
		item.name = name_tok.value
		item.name_tok = name_tok

	def _build_mod_item(self, item: A.Item, body: Tree) -> None:
		children = body.children
		item.name = children[1].value
		item.name_tok = children[1]
		if len(children) > 3:
			item.inline = True
			item.inner_attrs, item.items = self.build_block(children[3:-1])

	def _build_use_item(self, item: A.Item, body: Tree) -> None:
		item.uses = self.use_leaves(body)

	def _build_extern_crate_item(self, item: A.Item, body: Tree) -> None:
		names = [c for c in body.children if isinstance(c, Token) and c.type == "NAME"]
		# names[0] is the `crate` keyword
		item.name = names[1].value
		item.name_tok = names[1]
		if len(names) > 2:
			item.alias = names[2].value

	def _build_extern_block_item(self, item: A.Item, body: Tree) -> None:
		block = body.children[-1]
		item.name = "extern"
		item.tokens = _leaves(block)
		toks = item.tokens
		for k, tok in enumerate(toks[:-1]):
			if tok.type not in ("FN", "STATIC"):
				continue
			name = toks[k + 1]
			if name.value == "mut" and k + 2 < len(toks):
				name = toks[k + 2]
			if name.type == "NAME":
				item.declares.append(name.value)

	def _build_fn_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "FN")

	def _build_struct_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "STRUCT")
		last = body.children[-1]
		item.tuple_like = isinstance(last, Token) and last.type == "SEMICOLON"

	def _build_enum_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "ENUM")

	def _build_const_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "CONST")

	def _build_static_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "STATIC")

	def _build_type_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "TYPE")

	def _build_trait_item(self, item: A.Item, body: Tree) -> None:
		self._named(item, body, "TRAIT")
		block = body.children[-1]
		item.header = [t for t in item.tokens if t.start_pos < block.meta.start_pos]
		_, item.items = self.build_block(block.children)

	def _build_impl_item(self, item: A.Item, body: Tree) -> None:
		children = body.children
		idx = next(i for i, c in enumerate(children) if isinstance(c, Token) and c.type == "IMPL")
		block = children[-1]
		item.header = _leaves_of(children[idx + 1 : -1])
		item.tokens = _leaves_of(children[idx + 1 :])
		_, item.items = self.build_block(block.children)

	def _build_macro_item(self, item: A.Item, body: Tree) -> None:
		path_node = body.children[0]
		path = _macro_path(path_node)
		rest = body.children[2:]
		if path == ("macro_rules",):
			name_tok = rest[0]
			item.kind = A.MACRO_RULES
			item.name = name_tok.value
			item.name_tok = name_tok
			item.tokens = _leaves_of(rest[1:])
			return
		item.macro_path = path
		item.name = path[-1]
		item.tokens = _leaves(body)
		groups = [c for c in rest if isinstance(c, Tree)]
		item.args = _leaves(groups[0])[1:-1] if groups else []

	# ---- use trees ----

	def use_leaves(self, node: Tree) -> List[A.UseLeaf]:
		tree = next(c for c in node.children if isinstance(c, Tree))
		out: List[A.UseLeaf] = []
		self._use_tree(tree, (), out)
		return out

	def _use_tree(self, node: Tree, prefix: Tuple[str, ...], out: List[A.UseLeaf]) -> None:
		kind = _name(node)
		span = self.span(node)
		paths = [c for c in node.children if isinstance(c, Tree) and _name(c) == "use_path"]
		path = prefix + (_use_path(paths[0]) if paths else ())
		if kind == "use_name":
			if path[-1] == "self" and len(path) > 1:
				# `a::b::{self}` binds `b`
				path = path[:-1]
			out.append(A.UseLeaf(path=path, name=path[-1], glob=False, span=span))
		elif kind == "use_rename":
			alias = node.children[-1].value
			if path[-1] == "self" and len(path) > 1:
				path = path[:-1]
			out.append(A.UseLeaf(path=path, name=alias, glob=False, span=span))
		elif kind == "use_glob":
			out.append(A.UseLeaf(path=path, name=None, glob=True, span=span))
		elif kind == "use_nested":
			group = next(c for c in node.children if isinstance(c, Tree) and _name(c) == "use_group")
			for sub in _use_list(group):
				self._use_tree(sub, path, out)
		else:
			raise AssertionError(f"unknown use tree {kind}")


def _leaves_of(children: list) -> List[Token]:
	out: List[Token] = []
	for c in children:
		out.extend(_leaves(c))
	return out


def _use_path(node: Tree) -> Tuple[str, ...]:
	segs: List[str] = []
	toks = _leaves(node)
	i = 0
	while i < len(toks):
		tok = toks[i]
		if tok.type == "PATHSEP":
			if i == 0:
				segs.append("")  # leading `::`
		elif tok.type == "DOLLAR":
			segs.append("$" + toks[i + 1].value)
			i += 1
		else:
			segs.append(tok.value)
		i += 1
	return tuple(segs)


def _macro_path(node: Tree) -> Tuple[str, ...]:
	return _use_path(node)


def _use_list(group: Tree) -> List[Tree]:
	"""Flatten the left-recursive `use_list` of a group into its trees."""
	lists = [c for c in group.children if isinstance(c, Tree) and _name(c) == "use_list"]
	if not lists:
		return []
	out: List[Tree] = []
	cur: Optional[Tree] = lists[0]
	while cur is not None:
		trees = [c for c in cur.children if isinstance(c, Tree)]
		nxt = None
		for t in reversed(trees):
			if _name(t) == "use_list":
				nxt = t
			else:
				out.append(t)
		cur = nxt
	out.reverse()
	return out


__all__ = ["parse_source", "parse_use_fragment"]
