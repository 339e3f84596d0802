# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Bundling pipeline.

Runs the stages strictly in order:

	IDLE -> LOADED -> GRAPH_BUILT -> REACHABILITY_COMPUTED -> FLATTENED
	     -> EMITTED -> DONE

Any `BundleError` moves the run to FAILED (the error is tagged with the stage
it happened in) and is re-raised. The destination file is only touched by
the EMITTED step, so a failure in any earlier stage leaves it as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional

from rsbundle.config import BundleOptions, resolve_options, validate_problem_id
from rsbundle.core.errors import BundleError
from rsbundle.emit import emit
from rsbundle.flatten import FlattenResult, flatten
from rsbundle.loader import LoadedSources, load_sources
from rsbundle.module_graph import SourceTree, build_graph
from rsbundle.reachability import ReachableSet, compute_reachable
from rsbundle.resolve import Resolver

log = logging.getLogger(__name__)


class Stage(Enum):
	IDLE = auto()
	LOADED = auto()
	GRAPH_BUILT = auto()
	REACHABILITY_COMPUTED = auto()
	FLATTENED = auto()
	EMITTED = auto()
	DONE = auto()
	FAILED = auto()

	@property
	def label(self) -> str:
		return self.name.lower().replace("_", "-")


@dataclass
class BundleResult:
	output_path: Path
	text: str
	item_count: int
	modules: List[str] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"output": str(self.output_path),
			"items": self.item_count,
			"modules": list(self.modules),
		}


class BundleRun:
	"""One invocation; owns every intermediate product."""

	def __init__(self, opts: BundleOptions) -> None:
		validate_problem_id(opts.problem_id)
		self.opts = opts
		self.stage = Stage.IDLE
		self.loaded: Optional[LoadedSources] = None
		self.tree: Optional[SourceTree] = None
		self.reach: Optional[ReachableSet] = None
		self.flat: Optional[FlattenResult] = None
		self.error: Optional[BundleError] = None

	def _advance(self, stage: Stage) -> None:
		log.debug("stage: %s -> %s", self.stage.label, stage.label)
		self.stage = stage

	def run(self) -> BundleResult:
		pending = Stage.LOADED
		try:
			self.opts = opts = resolve_options(self.opts)
			out = opts.output_path
			log.info("Bundling %s -> %s", opts.entry_path, out)
			self.loaded = load_sources(opts)
			self._advance(Stage.LOADED)

			pending = Stage.GRAPH_BUILT
			self.tree = build_graph(self.loaded)
			self._advance(Stage.GRAPH_BUILT)

			pending = Stage.REACHABILITY_COMPUTED
			resolver = Resolver(self.tree)
			self.reach = compute_reachable(self.tree, resolver)
			self._advance(Stage.REACHABILITY_COMPUTED)

			pending = Stage.FLATTENED
			self.flat = flatten(self.tree, self.reach, resolver)
			self._advance(Stage.FLATTENED)

			pending = Stage.EMITTED
			text = emit(self.flat, out, rustfmt=opts.rustfmt)
			self._advance(Stage.EMITTED)
		except BundleError as err:
			self.error = err.with_stage(pending.label)
			self._advance(Stage.FAILED)
			if self.error is err:
				raise
			raise self.error from err
		self._advance(Stage.DONE)
		return BundleResult(
			output_path=out,
			text=text,
			item_count=sum(1 for _ in self.flat.items()),
			modules=["::".join(g.module) for g in self.flat.groups],
		)


def bundle(opts: BundleOptions) -> BundleResult:
	"""
	Bundle one problem: load, build the graph, walk, flatten and write.

	Raises `ValueError` for an invalid problem id and `BundleError`
	subclasses for everything else.
	"""
	return BundleRun(opts).run()


__all__ = ["BundleResult", "BundleRun", "Stage", "bundle"]
