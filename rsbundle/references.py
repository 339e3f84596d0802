# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reference scanner.

Walks the flat token list of one item and extracts the identifiers it
refers to:

- path sites (`Scanner`, `crate::math::gcd`, `$crate::io::Writer`),
- macro sites (`wln!(...)`),
- method/associated-name sites (`.pow(`, `<T as Zero>::zero`).

Sites keep the source offsets of every segment so the flattener can rewrite
exactly the part of a path that resolved. Nothing is resolved here, but
local bindings are recognised so that a parameter or a `let` named like a
library item is not taken for it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from lark import Token

from rsbundle.parser import ast as A
from rsbundle.parser.parser import parse_use_fragment

PATH = "path"
MACRO = "macro"
METHOD = "method"

PRIMITIVES = frozenset(
	{
		"i8", "i16", "i32", "i64", "i128", "isize",
		"u8", "u16", "u32", "u64", "u128", "usize",
		"f32", "f64", "bool", "char", "str",
	}
)

# Reserved words the grammar keeps as NAME tokens.
NAME_KEYWORDS = frozenset(
	{
		"let", "mut", "ref", "if", "else", "match", "while", "loop", "for", "in",
		"return", "break", "continue", "where", "dyn", "move", "true", "false",
		"box", "yield", "await", "do", "try", "macro", "_",
	}
)

# Only meaningful as the head of a longer path.
PATH_ONLY_HEADS = frozenset({"self", "super", "crate", "Self"})

_DEF_KEYWORD_TYPES = frozenset({"FN", "STRUCT", "ENUM", "TRAIT", "MOD", "TYPE", "CONST", "STATIC"})
_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {")": "(", "]": "[", "}": "{"}
_LITERALS = ("STRING", "RAW_STRING", "CHAR")


@dataclass(frozen=True)
class RefSite:
	kind: str
	segments: Tuple[str, ...]
	start: int  # offset of the first character (`$`, `::` or the first name)
	ends: Tuple[int, ...]  # end offset of each segment
	line: int
	column: int

	@property
	def symbol(self) -> str:
		return "::".join(self.segments)

	def prefix_end(self, count: int) -> int:
		return self.ends[count - 1]


@dataclass(frozen=True)
class LocalUse:
	"""A `use` statement found inside a body."""

	leaves: Tuple[A.UseLeaf, ...]
	start: int
	end: int
	line: int


@dataclass
class ScanResult:
	sites: List[RefSite] = field(default_factory=list)
	local_uses: List[LocalUse] = field(default_factory=list)


def _is(tok: Optional[Token], value: str) -> bool:
	return tok is not None and tok.value == value and tok.type not in _LITERALS


def _is_name(tok: Optional[Token]) -> bool:
	return tok is not None and tok.type == "NAME"


def scan_references(tokens: Sequence[Token], text: str, file: str, *, fn_params: bool = False) -> ScanResult:
	"""
	Extract reference sites (and body-level `use` statements) from `tokens`.

	Single-segment paths that name a local binding in scope (a parameter, a
	`let`/`for`/`match`/closure pattern binding or a generic parameter) are
	dropped. `fn_params` says the tokens start at a function's parameter list.
	"""
	out = ScanResult()
	n = len(tokens)

	def at(k: int) -> Optional[Token]:
		return tokens[k] if 0 <= k < n else None

	i = 0
	while i < n:
		tok = tokens[i]
		prev = at(i - 1)

		# attributes
		if _is(tok, "#") and (_is(at(i + 1), "[") or (_is(at(i + 1), "!") and _is(at(i + 2), "["))):
			i = _skip_brackets(tokens, i + 1 if _is(at(i + 1), "[") else i + 2)
			continue

		if tok.type == "USE":
			i = _local_use(tokens, i, text, file, out)
			continue

		if _is(tok, "$"):
			nxt = at(i + 1)
			if _is_name(nxt) and nxt.value == "crate" and _is(at(i + 2), "::"):
				i = _path(tokens, i + 1, tok, "$crate", out)
				continue
			# metavariable, plus its fragment specifier (`$x:expr`)
			if _is_name(nxt) and _is(at(i + 2), ":") and _is_name(at(i + 3)):
				i += 4
			else:
				i += 2 if nxt is not None and nxt.type == "NAME" else 1
			continue

		if tok.type == "PATHSEP":
			nxt = at(i + 1)
			if _is_name(nxt):
				if _is(prev, ">"):
					_method(nxt, out)
					i += 2
					continue
				if not _is_name(prev):
					i = _path(tokens, i + 1, tok, "", out)
					continue
			i += 1
			continue

		if tok.type != "NAME":
			i += 1
			continue

		if _is(prev, ".") and not _is(at(i - 2), "."):
			_method(tok, out)
			i += 1
			continue
		if prev is not None and (prev.type in _DEF_KEYWORD_TYPES or (prev.type == "NAME" and prev.value == "ref")) and not _is(at(i - 2), "*"):
			i += 1
			continue
		if _is_name(prev) and prev.value == "let" and not (_is(at(i + 1), "(") or _is(at(i + 1), "{") or _is(at(i + 1), "::")):
			i += 1
			continue
		if tok.value == "macro_rules" and _is(at(i + 1), "!"):
			i += 3 if _is_name(at(i + 2)) else 2
			continue

		has_tail = _is(at(i + 1), "::") and _is_name(at(i + 2))
		if not has_tail:
			if tok.value in PATH_ONLY_HEADS or tok.value in NAME_KEYWORDS or tok.value in PRIMITIVES:
				i += 1
				continue
			if _is(at(i + 1), ":"):
				i += 1
				continue
		elif tok.value in NAME_KEYWORDS:
			i += 1
			continue
		i = _path(tokens, i, tok, None, out)
	binds, decls = _local_bindings(tokens, fn_params)
	if binds or decls:
		decl_starts = {tokens[k].start_pos for k in decls}
		kept: List[RefSite] = []
		for s in out.sites:
			if not _is_local(s, binds, decl_starts):
				kept.append(s)
				continue
			# `T::zero()` on a generic parameter still calls `zero`
			for seg, end in zip(s.segments[1:], s.ends[1:]):
				kept.append(RefSite(METHOD, (seg,), end - len(seg), (end,), s.line, s.column))
		out.sites = kept
	return out


def _path(tokens: Sequence[Token], i: int, first: Token, head: Optional[str], out: ScanResult) -> int:
	"""
	Collect `NAME (:: NAME)*` and record the site; stop at a turbofish.

	`head` is `$crate` (tokens[i] is the `crate` name), `""` for a leading
	`::` (tokens[i] is the first name) or None (tokens[i] is the first name).
	"""
	n = len(tokens)
	segs: List[str] = []
	ends: List[int] = []
	if head == "$crate":
		segs.append(head)
		ends.append(tokens[i].end_pos)
		i += 1
	else:
		if head == "":
			segs.append(head)
			ends.append(first.end_pos)
		segs.append(tokens[i].value)
		ends.append(tokens[i].end_pos)
		i += 1
	while i + 1 < n and tokens[i].type == "PATHSEP" and tokens[i + 1].type == "NAME":
		segs.append(tokens[i + 1].value)
		ends.append(tokens[i + 1].end_pos)
		i += 2
	kind = PATH
	if i + 1 < n and _is(tokens[i], "!") and any(_is(tokens[i + 1], o) for o in _OPENERS):
		kind = MACRO
	out.sites.append(RefSite(kind, tuple(segs), first.start_pos, tuple(ends), first.line, first.column))
	return i


def _method(tok: Token, out: ScanResult) -> None:
	out.sites.append(RefSite(METHOD, (tok.value,), tok.start_pos, (tok.end_pos,), tok.line, tok.column))


def _skip_brackets(tokens: Sequence[Token], i: int) -> int:
	"""`tokens[i]` is `[`; return the index after its matching `]`."""
	depth = 0
	n = len(tokens)
	while i < n:
		tok = tokens[i]
		if _is(tok, "["):
			depth += 1
		elif _is(tok, "]"):
			depth -= 1
			if depth == 0:
				return i + 1
		i += 1
	return n


def _local_use(tokens: Sequence[Token], i: int, text: str, file: str, out: ScanResult) -> int:
	use_tok = tokens[i]
	start = use_tok.start_pos
	if i > 0 and tokens[i - 1].type == "PUB":
		start = tokens[i - 1].start_pos
	j = i
	while j < len(tokens) and tokens[j].type != "SEMICOLON":
		j += 1
	if j >= len(tokens):
		return len(tokens)
	semi = tokens[j]
	fragment = text[use_tok.start_pos : semi.end_pos]
	leaves = parse_use_fragment(fragment, file, line=use_tok.line)
	out.local_uses.append(LocalUse(tuple(leaves), start, semi.end_pos, use_tok.line))
	return j + 1


# ---- local bindings ----


@dataclass(frozen=True)
class _Binding:
	name: str
	start: int  # scope, as source offsets
	end: int
	generic: bool = False


def _opener(tok: Optional[Token]) -> bool:
	return tok is not None and tok.value in _OPENERS and tok.type not in _LITERALS


def _closer(tok: Optional[Token]) -> bool:
	return tok is not None and tok.value in _CLOSERS and tok.type not in _LITERALS


def _groups(tokens: Sequence[Token]) -> Tuple[Dict[int, int], List[int]]:
	"""Matching index of every bracket, and the innermost open bracket around each token (-1 at top level)."""
	match: Dict[int, int] = {}
	enclosing: List[int] = []
	stack: List[int] = []
	for k, tok in enumerate(tokens):
		enclosing.append(stack[-1] if stack else -1)
		if _opener(tok):
			stack.append(k)
		elif _closer(tok) and stack:
			o = stack.pop()
			match[o] = k
			match[k] = o
	return match, enclosing


def _seek(tokens: Sequence[Token], match: Dict[int, int], i: int, stops: Sequence[str]) -> int:
	"""First index at or after `i`, on the same nesting level, whose token is one of `stops`; stops at a closing bracket."""
	n = len(tokens)
	while i < n:
		tok = tokens[i]
		if tok.value in stops and tok.type not in _LITERALS:
			return i
		if _opener(tok):
			i = match.get(i, n - 1) + 1
			continue
		if _closer(tok):
			return i
		i += 1
	return n


def _params(tokens: Sequence[Token], match: Dict[int, int], lo: int, hi: int) -> List[Tuple[int, int]]:
	"""Comma-separated pieces of [lo, hi), each cut before its first top-level `:`."""
	pieces: List[Tuple[int, int]] = []
	start = lo
	cut: Optional[int] = None
	angle = 0
	i = lo
	while i < hi:
		tok = tokens[i]
		if _opener(tok):
			i = match.get(i, hi - 1) + 1
			continue
		if _is(tok, "<"):
			angle += 1
		elif _is(tok, ">"):
			angle -= 1
		elif angle == 0 and _is(tok, ":") and cut is None:
			cut = i
		elif angle == 0 and _is(tok, ","):
			pieces.append((start, cut if cut is not None else i))
			start, cut = i + 1, None
		i += 1
	if start < hi:
		pieces.append((start, cut if cut is not None else hi))
	return pieces


def _pattern_names(tokens: Sequence[Token], enclosing: List[int], lo: int, hi: int) -> List[int]:
	"""Indices of the identifiers a pattern in [lo, hi) binds."""
	found: List[int] = []
	for k in range(lo, hi):
		tok = tokens[k]
		if not _is_name(tok) or tok.value in NAME_KEYWORDS or tok.value in PATH_ONLY_HEADS or tok.value in PRIMITIVES:
			continue
		# constants, variants and unit structs
		if not (tok.value[0].islower() or tok.value[0] == "_"):
			continue
		prev = tokens[k - 1] if k > 0 else None
		nxt = tokens[k + 1] if k + 1 < len(tokens) else None
		if _is(prev, "$") or _is(prev, ".") or (prev is not None and prev.type == "PATHSEP"):
			continue
		if nxt is not None and (nxt.type == "PATHSEP" or _is(nxt, "(") or _is(nxt, "{") or _is(nxt, "!")):
			continue
		# field name in `Point { x: px }`
		if _is(nxt, ":") and enclosing[k] >= lo and _is(tokens[enclosing[k]], "{"):
			continue
		found.append(k)
	return found


def _arm_start(tokens: Sequence[Token], match: Dict[int, int], arrow: int) -> int:
	"""First token of the match-arm pattern ending at `tokens[arrow]` (`=>`)."""
	i = arrow - 1
	while i >= 0:
		tok = tokens[i]
		if _closer(tok):
			o = match.get(i)
			if o is None or (_is(tok, "}") and o > 0 and tokens[o - 1].type == "FATARROW"):
				return i + 1
			i = o - 1
			continue
		if _opener(tok) or _is(tok, ",") or tok.type == "FATARROW":
			return i + 1
		i -= 1
	return 0


_CLOSURE_PRECEDERS = frozenset({"(", "[", "{", ",", "=", ";", ":", "=>", "move", "return"})


def _local_bindings(tokens: Sequence[Token], fn_params: bool) -> Tuple[List[_Binding], Set[int]]:
	"""
	Names bound inside the item (parameters, pattern bindings, generic
	parameters) with the source range they are visible in, plus the indices
	of the binding tokens themselves.
	"""
	n = len(tokens)
	binds: List[_Binding] = []
	decls: Set[int] = set()
	if not n:
		return binds, decls
	match, enclosing = _groups(tokens)
	item_end = tokens[-1].end_pos

	def at(k: int) -> Optional[Token]:
		return tokens[k] if 0 <= k < n else None

	def close_of(k: int) -> int:
		m = match.get(k) if k >= 0 else None
		return tokens[m].end_pos if m is not None else item_end

	def start_of(k: int) -> int:
		return tokens[k].start_pos if k < n else item_end

	def bind(idxs: List[int], start: int, end: int, generic: bool = False) -> None:
		for k in idxs:
			decls.add(k)
			binds.append(_Binding(tokens[k].value, start, end, generic))

	def body_end(i: int) -> int:
		"""End of the `{ ... }` (or `;`) that finishes the signature starting at `i`."""
		body = _seek(tokens, match, i, ("{", ";"))
		if body < n and _is(tokens[body], "{"):
			return close_of(body)
		return tokens[body].end_pos if body < n else item_end

	def generics(g: int) -> int:
		after = _skip_angles(tokens, g)
		end = body_end(after)
		for lo, hi in _params(tokens, match, g + 1, after - 1):
			k = lo + 1 if lo < hi and tokens[lo].type == "CONST" else lo
			if k < hi and _is_name(tokens[k]):
				bind([k], tokens[g].start_pos, end, generic=True)
		return after

	def signature(j: int) -> None:
		close = match.get(j)
		if close is None:
			return
		end = body_end(close + 1)
		for lo, hi in _params(tokens, match, j + 1, close):
			bind(_pattern_names(tokens, enclosing, lo, hi), tokens[close].end_pos, end)

	i = 0
	if _is(tokens[0], "<"):
		i = generics(0)
	if fn_params and _is(at(i), "("):
		signature(i)

	closing: Set[int] = set()
	for k, tok in enumerate(tokens):
		prev = at(k - 1)
		if tok.type == "FN" and _is_name(at(k + 1)):
			j = k + 2
			if _is(at(j), "<"):
				j = generics(j)
			if _is(at(j), "("):
				signature(j)
		elif tok.type in ("STRUCT", "ENUM", "TRAIT", "TYPE") and _is_name(at(k + 1)) and _is(at(k + 2), "<"):
			generics(k + 2)
		elif tok.type == "IMPL" and _is(at(k + 1), "<"):
			generics(k + 1)
		elif _is_name(tok) and tok.value == "let":
			stop = _seek(tokens, match, k + 1, (":", "=", ";"))
			names = _pattern_names(tokens, enclosing, k + 1, stop)
			if (_is_name(prev) and prev.value in ("if", "while")) or _is(prev, "&"):
				body = _seek(tokens, match, stop, ("{",))
				end = close_of(body) if body < n and _is(tokens[body], "{") else close_of(enclosing[k])
				bind(names, start_of(body), end)
			else:
				semi = _seek(tokens, match, stop, (";",))
				bind(names, start_of(semi), close_of(enclosing[k]))
		elif _is_name(tok) and tok.value == "for" and not _is(at(k + 1), "<"):
			kw = _seek(tokens, match, k + 1, ("in", "{", ";"))
			if not (_is_name(at(kw)) and tokens[kw].value == "in"):
				continue
			body = _seek(tokens, match, kw + 1, ("{",))
			if body < n and _is(tokens[body], "{"):
				bind(_pattern_names(tokens, enclosing, k + 1, kw), tokens[body].start_pos, close_of(body))
		elif tok.type == "FATARROW":
			lo = _arm_start(tokens, match, k)
			hi = min(_seek(tokens, match, lo, ("if", "=>")), k)
			if any(_is(tokens[x], "$") for x in range(lo, hi)):
				continue  # macro_rules matcher
			if _is(at(k + 1), "{"):
				end = close_of(k + 1)
			else:
				end = start_of(_seek(tokens, match, k + 1, (",",)))
			bind(_pattern_names(tokens, enclosing, lo, hi), tok.end_pos, end)
		elif _is(tok, "|") and k not in closing and (prev is None or (prev.type not in _LITERALS and prev.value in _CLOSURE_PRECEDERS)):
			close = _seek(tokens, match, k + 1, ("|",))
			if close < n and _is(tokens[close], "|"):
				closing.add(close)
				for lo, hi in _params(tokens, match, k + 1, close):
					bind(_pattern_names(tokens, enclosing, lo, hi), tokens[close].end_pos, close_of(enclosing[k]))
	return binds, decls


def _is_local(site: RefSite, binds: List[_Binding], decl_starts: Set[int]) -> bool:
	if site.kind != PATH:
		return False
	if site.start in decl_starts:
		return True
	name = site.segments[0]
	single = len(site.segments) == 1
	return any(b.name == name and b.start <= site.start < b.end and (single or b.generic) for b in binds)


# ---- impl / macro headers ----


@dataclass(frozen=True)
class ImplHeaderParts:
	trait_tokens: Tuple[Token, ...]
	target_tokens: Tuple[Token, ...]


def _skip_angles(tokens: Sequence[Token], i: int) -> int:
	"""`tokens[i]` is `<`; return the index after the matching `>`."""
	depth = 0
	while i < len(tokens):
		if _is(tokens[i], "<"):
			depth += 1
		elif _is(tokens[i], ">"):
			depth -= 1
			if depth == 0:
				return i + 1
		i += 1
	return i


def split_impl_header(header: Sequence[Token]) -> ImplHeaderParts:
	"""
	Split the tokens after `impl` into the capability part and the target part.

	Generic parameters and the `where` clause are dropped. Inherent impls have
	an empty capability part.
	"""
	i = 0
	if i < len(header) and _is(header[i], "<"):
		i = _skip_angles(header, i)
	body = list(header[i:])
	depth = 0
	cut = len(body)
	split: Optional[int] = None
	for k, tok in enumerate(body):
		if tok.value in ("<", "(", "[") and tok.type not in ("STRING", "CHAR"):
			depth += 1
		elif tok.value in (">", ")", "]") and tok.type not in ("STRING", "CHAR"):
			depth -= 1
		elif depth == 0 and _is_name(tok) and tok.value == "where":
			cut = k
			break
		elif depth == 0 and _is_name(tok) and tok.value == "for" and split is None:
			nxt = body[k + 1] if k + 1 < len(body) else None
			if not _is(nxt, "<"):
				split = k
	if split is None or split > cut:
		return ImplHeaderParts((), tuple(body[:cut]))
	return ImplHeaderParts(tuple(body[:split]), tuple(body[split + 1 : cut]))


def head_path_start(tokens: Sequence[Token]) -> Optional[Token]:
	"""
	First token of the path naming a type/capability, skipping references,
	lifetimes and `mut`/`dyn`/`!`. None for tuples, slices, arrays and
	pointers, whose head is never a library type.
	"""
	for tok in tokens:
		if tok.type == "LIFETIME" or _is(tok, "&") or _is(tok, "!") or _is(tok, "?"):
			continue
		if _is_name(tok) and tok.value in ("mut", "dyn"):
			continue
		if tok.type in ("NAME", "PATHSEP") or _is(tok, "$"):
			return tok
		return None
	return None


def capability_paths(tokens: Sequence[Token]) -> List[Tuple[str, ...]]:
	"""
	Capability paths implemented by `impl <path> for ...` blocks in a macro
	body (what an invocation of the macro provides).
	"""
	found: List[Tuple[str, ...]] = []
	n = len(tokens)
	i = 0
	while i < n:
		if tokens[i].type != "IMPL":
			i += 1
			continue
		j = i + 1
		if j < n and _is(tokens[j], "<"):
			j = _skip_angles(tokens, j)
		segs: List[str] = []
		while j < n:
			tok = tokens[j]
			if _is(tok, "$") and j + 1 < n and tokens[j + 1].value == "crate":
				segs.append("$crate")
				j += 2
			elif _is_name(tok) and tok.value != "for":
				segs.append(tok.value)
				j += 1
			elif tok.type == "PATHSEP" and j == i + 1:
				segs.append("")
				j += 1
				continue
			else:
				break
			if j < n and tokens[j].type == "PATHSEP":
				j += 1
				continue
			break
		if j < n and _is(tokens[j], "<"):
			j = _skip_angles(tokens, j)
		if segs and j < n and _is_name(tokens[j]) and tokens[j].value == "for":
			found.append(tuple(segs))
		i = j if j > i else i + 1
	return found


def defined_names(args: Sequence[Token]) -> List[str]:
	"""Identifiers passed to an item-level macro invocation that it may define."""
	out: List[str] = []
	for k, tok in enumerate(args):
		if not _is_name(tok):
			continue
		if tok.value in PRIMITIVES or tok.value in NAME_KEYWORDS or tok.value in PATH_ONLY_HEADS:
			continue
		if k > 0 and _is(args[k - 1], "$"):
			continue
		if tok.value not in out:
			out.append(tok.value)
	return out


__all__ = [
	"ImplHeaderParts",
	"LocalUse",
	"MACRO",
	"METHOD",
	"PATH",
	"PRIMITIVES",
	"RefSite",
	"ScanResult",
	"capability_paths",
	"defined_names",
	"head_path_start",
	"scan_references",
	"split_impl_header",
]
