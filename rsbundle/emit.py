# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Emitter: serializes a `FlattenResult` and writes it in one step.

Layout: entry inner attributes, external `use` declarations, macro
definitions, entry items, then library items grouped by module under a
`// <module path>` comment. Blocks are separated by one blank line and the
file ends with a single newline, so equal inputs give byte-equal files.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from rsbundle.core.errors import WriteError
from rsbundle.flatten import FlattenResult

log = logging.getLogger(__name__)


def render(flat: FlattenResult) -> str:
	blocks: List[str] = []
	if flat.inner_attrs:
		blocks.append("\n".join(flat.inner_attrs))
	if flat.uses:
		blocks.append("\n".join(flat.uses))
	blocks.extend(item.text for item in flat.macros)
	blocks.extend(item.text for item in flat.entry_items)
	for group in flat.groups:
		head, *rest = group.items
		blocks.append(f"// {group.title}\n{head.text}")
		blocks.extend(item.text for item in rest)
	return "\n\n".join(blocks) + "\n"


def write_output(path: Path, text: str) -> None:
	"""
	Write `text` to `path` atomically: a sibling temporary file is written
	first and moved into place. The parent directory is created if missing.
	"""
	tmp = path.with_name(path.name + f".tmp.{os.getpid()}")
	try:
		path.parent.mkdir(parents=True, exist_ok=True)
		tmp.write_bytes(text.encode("utf-8"))
		os.replace(tmp, path)
	except OSError as err:
		if tmp.exists():
			tmp.unlink()
		raise WriteError(message=f"cannot write output: {err.strerror or err}", file=str(path)) from err


def run_formatter(command: str, path: Path) -> bool:
	"""
	Run an external formatter (`rustfmt`) on the written bundle.

	A missing or failing formatter is only a warning; the unformatted file
	stays in place.
	"""
	cmd = [*shlex.split(command), str(path)]
	try:
		res = subprocess.run(cmd, capture_output=True, text=True)
	except OSError as err:
		log.warning("formatter %s could not be started: %s", command, err)
		return False
	if res.returncode != 0:
		detail = res.stderr.strip() or res.stdout.strip()
		log.warning("formatter %s failed (exit %d): %s", command, res.returncode, detail)
		return False
	log.debug("formatted %s with %s", path, command)
	return True


def emit(flat: FlattenResult, path: Path, *, rustfmt: Optional[str] = None) -> str:
	"""Render and write the bundle; returns the text that was written."""
	text = render(flat)
	write_output(path, text)
	if rustfmt:
		run_formatter(rustfmt, path)
	return text


__all__ = ["emit", "render", "run_formatter", "write_output"]
