"""Tests for the CLI module: arg parsing, config merging, exit codes, end-to-end."""

from __future__ import annotations

import argparse
from pathlib import Path

import pytest

from stencil.cli import build_parser, main, parse_jobs_arg, resolve_options
from stencil.config import Whitespace

GOOD = "{% macro m(a) %}{{ a }}{% endmacro %}{{ m(1) }}"
BAD = "{% macro m(a) %}{{ a }}{% endmacro %}\n{{ m() }}\n"


class TestParseHelpers:
    def test_parse_jobs(self) -> None:
        assert parse_jobs_arg("4") == 4

    def test_parse_jobs_not_a_number(self) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            parse_jobs_arg("many")

    def test_parse_jobs_must_be_positive(self) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            parse_jobs_arg("0")


class TestArgParsing:
    def test_templates_only(self) -> None:
        ns = build_parser().parse_args(["a.html", "b.html"])
        assert ns.templates == ["a.html", "b.html"]
        assert ns.config is None
        assert ns.jobs == 1
        assert ns.dump is False

    def test_all_flags(self) -> None:
        ns = build_parser().parse_args(
            [
                "a.html",
                "-c",
                "conf.toml",
                "--syntax",
                "alt",
                "--whitespace",
                "minimize",
                "-j",
                "3",
                "--dump",
                "-v",
            ]
        )
        assert ns.config == "conf.toml"
        assert ns.syntax == "alt"
        assert ns.whitespace == "minimize"
        assert ns.jobs == 3
        assert ns.dump is True
        assert ns.verbose is True

    def test_invalid_whitespace_is_usage_error(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["a.html", "--whitespace", "tidy"])
        assert exc_info.value.code == 2


class TestResolveOptions:
    def test_config_discovered_beside_template(self, tmp_path: Path) -> None:
        (tmp_path / "stencil.toml").write_text('[general]\nwhitespace = "suppress"\n')
        ns = build_parser().parse_args([str(tmp_path / "page.html")])
        opts = resolve_options(ns)
        assert opts.config.whitespace == Whitespace.SUPPRESS
        assert opts.whitespace is None

    def test_cli_whitespace_overrides_config(self, tmp_path: Path) -> None:
        (tmp_path / "stencil.toml").write_text('[general]\nwhitespace = "suppress"\n')
        ns = build_parser().parse_args([str(tmp_path / "page.html"), "--whitespace", "preserve"])
        assert resolve_options(ns).whitespace == Whitespace.PRESERVE


class TestExitCodes:
    def test_success(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "ok.html"
        doc.write_text(GOOD)
        assert main([str(doc)]) == 0
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""

    def test_diagnostics_return_1(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "bad.html"
        doc.write_text(BAD)
        assert main([str(doc)]) == 1
        err = capsys.readouterr().err
        assert "error: missing argument when calling macro `m`: `a`" in err
        assert f"--> {doc}:2:5" in err
        assert "error: 1 of 1 template(s) failed to compile" in err

    def test_missing_template_returns_2(self, tmp_path: Path, capsys) -> None:
        assert main([str(tmp_path / "nope.html")]) == 2
        assert "does not exist" in capsys.readouterr().err

    def test_undecodable_template_returns_2(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "latin.html"
        doc.write_bytes(b"\xff\xfe")
        assert main([str(doc)]) == 2
        assert "can't decode" in capsys.readouterr().err

    def test_bad_config_returns_2(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "stencil.toml").write_text('[general]\nwhitespace = "tidy"\n')
        doc = tmp_path / "ok.html"
        doc.write_text(GOOD)
        assert main([str(doc)]) == 2
        assert 'invalid value for `whitespace`: "tidy"' in capsys.readouterr().err

    def test_unknown_syntax_returns_2(self, tmp_path: Path) -> None:
        doc = tmp_path / "ok.html"
        doc.write_text(GOOD)
        assert main([str(doc), "--syntax", "nope"]) == 2


class TestEndToEnd:
    def test_dump(self, tmp_path: Path, capsys) -> None:
        doc = tmp_path / "ok.html"
        doc.write_text(GOOD)
        assert main([str(doc), "--dump"]) == 0
        out = capsys.readouterr().out
        assert out.startswith(f"RenderProgram {doc}\n")
        assert "  InvokeMacro m(a=1)\n" in out

    def test_parallel_mixed_results(self, tmp_path: Path, capsys) -> None:
        paths = []
        for i in range(6):
            doc = tmp_path / f"t{i}.html"
            doc.write_text(BAD if i == 3 else GOOD)
            paths.append(str(doc))
        assert main([*paths, "-j", "3"]) == 1
        err = capsys.readouterr().err
        assert err.count("error: missing argument") == 1
        assert "t3.html:2:5" in err
        assert "1 of 6 template(s) failed" in err

    def test_includes_from_config_dirs(self, tmp_path: Path) -> None:
        (tmp_path / "parts").mkdir()
        (tmp_path / "parts" / "nav.html").write_text(GOOD)
        (tmp_path / "stencil.toml").write_text('[general]\ndirs = ["parts"]\n')
        doc = tmp_path / "page.html"
        doc.write_text('{% include "nav.html" %}')
        assert main([str(doc)]) == 0

    def test_custom_syntax_from_config(self, tmp_path: Path) -> None:
        (tmp_path / "stencil.toml").write_text(
            '[[syntax]]\nname = "alt"\nexpr_start = "<<"\nexpr_end = ">>"\n'
        )
        doc = tmp_path / "page.html"
        doc.write_text("<< value >>")
        assert main([str(doc), "--syntax", "alt"]) == 0
