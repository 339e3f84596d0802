# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Reachability walker.

Mark-and-sweep over item identities: starting from the entry point (plus the
names the entry file imports explicitly), every reference site of a marked
item is resolved and its targets are marked in turn. Impl blocks and
item-level macro invocations are never referenced by name, so a fixed-point
pass pulls them in. An impl block needs a reachable target type and one of
its methods called; impls of capabilities outside the tree only need the
target. An invocation needs a capability it implements to be reached.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, List, Optional, Set, Tuple

from rsbundle.core.errors import UnresolvedReferenceError
from rsbundle.module_graph import ItemId, ItemKind, SourceTree
from rsbundle.references import MACRO, METHOD, PATH, RefSite
from rsbundle.resolve import NS_ANY, NS_PLAIN, Resolution, Resolver

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSite:
	site: RefSite
	resolution: Resolution


@dataclass
class ReachableSet:
	"""
	The closed set of items the entry point needs.

	`sites` holds every resolved reference site per reachable item (what the
	flattener rewrites). `called` collects method and associated names,
	`unresolved` the single-segment names that resolved outside the tree,
	split by namespace (`plain` or `macro`).
	"""

	entry: ItemId
	items: Set[ItemId] = field(default_factory=set)
	order: List[ItemId] = field(default_factory=list)
	sites: Dict[ItemId, List[ResolvedSite]] = field(default_factory=dict)
	called: Set[str] = field(default_factory=set)
	unresolved: Dict[str, Set[str]] = field(default_factory=lambda: {NS_PLAIN: set(), MACRO: set()})

	def __contains__(self, item_id: ItemId) -> bool:
		return item_id in self.items

	def __len__(self) -> int:
		return len(self.items)


@dataclass(frozen=True)
class _ImplFacts:
	capability: Optional[Tuple[ItemId, ...]]  # None for inherent impls
	targets: Tuple[ItemId, ...]
	mentioned: Tuple[ItemId, ...]


@dataclass(frozen=True)
class _ExpansionFacts:
	library_caps: Tuple[ItemId, ...]
	external_caps: bool
	arg_types: Tuple[ItemId, ...]


class _Walker:
	def __init__(self, tree: SourceTree, resolver: Resolver, entry: ItemId) -> None:
		self.tree = tree
		self.resolver = resolver
		self.result = ReachableSet(entry=entry)
		self.queue: Deque[ItemId] = deque()
		self.pending_impls: List[ItemId] = [i for i, d in tree.items.items() if d.kind == ItemKind.IMPL]
		self.pending_expansions: List[ItemId] = [i for i, d in tree.items.items() if d.kind == ItemKind.EXPANSION]
		self._impl_facts: Dict[ItemId, _ImplFacts] = {}
		self._exp_facts: Dict[ItemId, _ExpansionFacts] = {}

	def mark(self, item_id: ItemId) -> None:
		if item_id in self.result.items:
			return
		self.result.items.add(item_id)
		self.result.order.append(item_id)
		self.queue.append(item_id)

	def seed(self) -> None:
		self.mark(self.result.entry)
		for edge in self.tree.modules[self.tree.entry_root].imports:
			if edge.glob:
				continue
			r = self.resolver.resolve_edge(edge, NS_ANY)
			for target in r.items:
				self.mark(target)

	def run(self) -> ReachableSet:
		self.seed()
		while True:
			while self.queue:
				self.visit(self.queue.popleft())
			progressed = False
			for impl_id in list(self.pending_impls):
				if self.impl_required(impl_id):
					self.pending_impls.remove(impl_id)
					self.mark(impl_id)
					progressed = True
			for exp_id in list(self.pending_expansions):
				if exp_id in self.result.items:
					self.pending_expansions.remove(exp_id)
				elif self.expansion_required(exp_id):
					self.pending_expansions.remove(exp_id)
					self.mark(exp_id)
					progressed = True
			if not progressed:
				return self.result

	def visit(self, item_id: ItemId) -> None:
		item = self.tree.items[item_id]
		res = self.result
		resolved: List[ResolvedSite] = []
		for site in item.references():
			if site.kind == METHOD:
				res.called.add(site.segments[0])
				continue
			r = self.resolver.resolve_site(item, site)
			if r.unresolved:
				if len(site.segments) == 1:
					res.unresolved[MACRO if site.kind == MACRO else NS_PLAIN].add(site.segments[0])
				else:
					res.called.update(site.segments[1:])
				continue
			resolved.append(ResolvedSite(site, r))
			for target in r.items:
				self.mark(target)
			res.called.update(site.segments[r.consumed :])
		res.sites[item_id] = resolved

	# ---- impl blocks ----

	def impl_facts(self, impl_id: ItemId) -> _ImplFacts:
		facts = self._impl_facts.get(impl_id)
		if facts is None:
			item = self.tree.items[impl_id]
			header = item.impl_header()
			cap = self.resolver.resolve_items(item, header.trait_site) if header.trait_site is not None else None
			mentioned: List[ItemId] = []
			for site in header.mentions:
				mentioned.extend(self.resolver.resolve_items(item, site))
			facts = _ImplFacts(
				capability=cap,
				targets=self.resolver.resolve_items(item, header.target_site),
				mentioned=tuple(mentioned),
			)
			self._impl_facts[impl_id] = facts
		return facts

	def impl_required(self, impl_id: ItemId) -> bool:
		facts = self.impl_facts(impl_id)
		reached = self.result.items
		target_reached = any(t in reached for t in facts.targets)
		if facts.targets and not target_reached:
			return False
		assoc = self.tree.items[impl_id].impl_header().assoc_names
		called = bool(assoc & self.result.called)
		if facts.capability is None:
			return target_reached and called
		if facts.capability:
			if not any(c in reached for c in facts.capability):
				return target_reached and called
			if not facts.targets:
				# target outside the library, or generic
				return True
			names = assoc | self.capability_names(facts.capability)
			return not names or bool(names & self.result.called)
		# capability outside the tree
		if facts.targets:
			return target_reached
		return any(m in reached for m in facts.mentioned)

	def capability_names(self, caps: Tuple[ItemId, ...]) -> FrozenSet[str]:
		"""Associated names a capability declares (default methods included)."""
		names: Set[str] = set()
		for cap in caps:
			names.update(sub.name for sub in self.tree.items[cap].syntax.items if sub.name is not None)
		return frozenset(names)

	# ---- item-level macro invocations ----

	def expansion_facts(self, exp_id: ItemId) -> _ExpansionFacts:
		facts = self._exp_facts.get(exp_id)
		if facts is not None:
			return facts
		item = self.tree.items[exp_id]
		lib_caps: List[ItemId] = []
		external = False
		for site in item.references():
			if site.kind != MACRO:
				continue
			r = self.resolver.resolve_site(item, site)
			for macro_id in r.items:
				macro = self.tree.items[macro_id]
				for path in macro.provides():
					cr = self.resolver.resolve_path(macro.module, path, NS_PLAIN, file=macro.file)
					caps = [i for i in cr.items if self.tree.items[i].kind == ItemKind.TRAIT]
					if caps:
						lib_caps.extend(caps)
					else:
						external = True
			break
		args_start = item.syntax.args[0].start_pos if item.syntax.args else None
		arg_types: List[ItemId] = []
		if args_start is not None:
			for site in item.references():
				if site.kind == PATH and site.start >= args_start:
					arg_types.extend(self.resolver.resolve_items(item, site))
		facts = _ExpansionFacts(tuple(lib_caps), external, tuple(arg_types))
		self._exp_facts[exp_id] = facts
		return facts

	def expansion_required(self, exp_id: ItemId) -> bool:
		facts = self.expansion_facts(exp_id)
		reached = self.result.items
		if facts.arg_types and not any(t in reached for t in facts.arg_types):
			return False
		if any(c in reached for c in facts.library_caps):
			return True
		return bool(facts.arg_types) and facts.external_caps


def compute_reachable(tree: SourceTree, resolver: Optional[Resolver] = None) -> ReachableSet:
	"""
	Compute the reachable set of `tree`'s entry point.

	Raises `UnresolvedReferenceError` when the entry point is missing or a
	path that enters the tree cannot be resolved.
	"""
	entry = tree.entry_point()
	if entry is None:
		raise UnresolvedReferenceError(
			message=f"entry point `{tree.entry_fn}` not found",
			file=tree.entry_file,
			symbol=tree.entry_fn,
		)
	walker = _Walker(tree, resolver or Resolver(tree), entry)
	result = walker.run()
	log.info("reachable: %d of %d item(s)", len(result.items), len(tree.items))
	return result


__all__ = ["ReachableSet", "ResolvedSite", "compute_reachable"]
