# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rsbundle.config import BundleOptions
from rsbundle.core.errors import BundleError
from rsbundle.pipeline import bundle

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="rsbundle", description="Bundle a Rust entry file and the library code it uses into one file")
	sub = p.add_subparsers(dest="cmd", required=True)

	b = sub.add_parser("bundle", help="Write bundled/<problem-id>.rs for src/bin/<problem-id>.rs")
	b.add_argument("problem_id", type=str, help="Problem id (file stem of the entry file under src/bin)")
	b.add_argument("--project-root", type=Path, default=Path("."), help="Project root holding Cargo.toml (default: .)")
	b.add_argument(
		"--crate-name",
		type=str,
		default=None,
		help="Library crate name (default: from Cargo.toml, else algorist)",
	)
	b.add_argument("--out-dir", type=Path, default=Path("bundled"), help="Output directory (default: ./bundled)")
	b.add_argument("--entry-fn", type=str, default="main", help="Entry point function (default: main)")
	b.add_argument(
		"--rustfmt",
		nargs="?",
		const="rustfmt",
		default=None,
		metavar="CMD",
		help="Format the bundle after writing it (default command: rustfmt)",
	)
	b.add_argument("--json", action="store_true", help="Emit machine-readable JSON report")
	b.add_argument(
		"--log-level",
		type=str,
		default="INFO",
		choices=["DEBUG", "INFO", "WARNING", "ERROR"],
		help="Logging level (default: INFO)",
	)
	return p


def _configure_logging(level: str) -> None:
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(message)s",
		stream=sys.stderr,
	)


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)

	if args.cmd == "bundle":
		_configure_logging(args.log_level)
		opts = BundleOptions(
			project_root=args.project_root,
			problem_id=args.problem_id,
			crate_name=args.crate_name,
			out_dir=args.out_dir,
			entry_fn=args.entry_fn,
			rustfmt=args.rustfmt,
		)
		try:
			result = bundle(opts)
		except ValueError as err:
			p.error(str(err))
			return 2
		except BundleError as err:
			if args.json:
				print(json.dumps({"ok": False, "error": err.to_dict()}, sort_keys=True, separators=(",", ":")))
			else:
				print(err.format_human(), file=sys.stderr)
			return 1
		if args.json:
			report = {"ok": True, **result.to_dict()}
			print(json.dumps(report, sort_keys=True, separators=(",", ":")))
		else:
			log.info("wrote %s (%d item(s))", result.output_path, result.item_count)
		return 0

	raise AssertionError("unreachable")


if __name__ == "__main__":
	sys.exit(main())
