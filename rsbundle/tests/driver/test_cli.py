# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

from rsbundle.cli import main

ROOT = Path(__file__).resolve().parents[3]


def _run(args: list[str]) -> subprocess.CompletedProcess[str]:
	return subprocess.run(
		[sys.executable, "-m", "rsbundle", *args],
		cwd=ROOT,
		text=True,
		capture_output=True,
	)


def _simple_project(project):
	project.write("src/lib.rs", "pub mod math;\n")
	project.write("src/math.rs", "pub fn gcd(a: u64, b: u64) -> u64 { if b == 0 { a } else { gcd(b, a % b) } }\n")
	project.write("src/bin/a.rs", "use algorist::math::gcd;\nfn main() { println!(\"{}\", gcd(4, 6)); }\n")
	return project


def test_cli_bundles_and_exits_zero(project) -> None:
	_simple_project(project)

	res = _run(["bundle", "a", "--project-root", str(project.root)])

	assert res.returncode == 0, res.stderr
	assert "Bundling" in res.stderr
	assert "pub fn gcd(" in project.output.read_text(encoding="utf-8")


def test_cli_reports_bundling_errors_with_exit_one(project) -> None:
	_simple_project(project)
	project.write("src/bin/a.rs", "use algorist::math::lcm;\nfn main() {}\n")

	res = _run(["bundle", "a", "--project-root", str(project.root)])

	assert res.returncode == 1
	assert "[E-UNRESOLVED]" in res.stderr
	assert "src/bin/a.rs:1:" in res.stderr
	assert not project.output.exists()


def test_cli_rejects_bad_problem_ids_with_exit_two(project) -> None:
	_simple_project(project)

	res = _run(["bundle", "../a", "--project-root", str(project.root)])

	assert res.returncode == 2
	assert "problem id" in res.stderr


def test_cli_json_report(project, capsys) -> None:
	_simple_project(project)

	code = main(["bundle", "a", "--project-root", str(project.root), "--json", "--log-level", "ERROR"])
	report = json.loads(capsys.readouterr().out)

	assert code == 0
	assert report == {"ok": True, "output": str(project.output), "items": 2, "modules": ["algorist::math"]}


def test_cli_json_error(project, capsys) -> None:
	_simple_project(project)
	project.write("src/math.rs", "pub fn gcd(\n")

	code = main(["bundle", "a", "--project-root", str(project.root), "--json", "--log-level", "ERROR"])
	report = json.loads(capsys.readouterr().out)

	assert code == 1
	assert report["ok"] is False
	assert report["error"]["reason_code"] == "E-PARSE"
	assert report["error"]["file"] == "src/math.rs"
	assert report["error"]["stage"] == "loaded"


def test_cli_custom_out_dir_and_crate_name(project) -> None:
	_simple_project(project)
	project.write("src/bin/a.rs", "use mylib::math::gcd;\nfn main() { gcd(1, 2); }\n")

	code = main(
		[
			"bundle",
			"a",
			"--project-root",
			str(project.root),
			"--crate-name",
			"mylib",
			"--out-dir",
			"out",
			"--log-level",
			"ERROR",
		]
	)

	assert code == 0
	assert (project.root / "out" / "a.rs").is_file()
	assert not project.output.exists()


def test_cli_requires_a_subcommand() -> None:
	with pytest.raises(SystemExit) as exc:
		main([])

	assert exc.value.code == 2
