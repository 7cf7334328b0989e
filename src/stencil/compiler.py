"""Compilation driver: runs the pipeline per template and resolves includes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from stencil.ast import Include, Template
from stencil.codegen import RenderProgram, generate
from stencil.config import Config, Whitespace
from stencil.errors import Diagnostic
from stencil.macros import bind_all, build_macro_table, walk_nodes
from stencil.parser import parse
from stencil.report import render_all
from stencil.tokens import Span

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceUnit:
    """One template source.

    ``origin`` locates the host declaration an inline source belongs to;
    it is reported as the outermost site of every diagnostic.
    """

    name: str
    text: str
    path: Path | None = None
    origin: Span | None = None


@dataclass(frozen=True, slots=True)
class Compilation:
    """Result of compiling one unit: a program, or diagnostics, never both."""

    unit: SourceUnit
    program: RenderProgram | None
    diagnostics: tuple[Diagnostic, ...]
    sources: dict[str, str]

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def report(self) -> str:
        return render_all(self.diagnostics, self.sources)


@dataclass
class Compiler:
    """Compiles templates against one configuration.

    Finished compilations are memoized by template identity, so a template
    included from many places is parsed and bound once. The memo may be
    shared by worker threads; all other state lives in a single
    compilation.
    """

    config: Config = field(default_factory=Config)
    syntax_name: str | None = None
    whitespace: Whitespace | None = None
    max_include_depth: int = 16
    _memo: dict[object, Compilation] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def compile_file(self, path: Path) -> Compilation:
        """Compile a template file."""
        return self._compile_path(path, [])[0]

    def compile_source(
        self,
        source: str,
        name: str = "<input>",
        origin: Span | None = None,
        path: Path | None = None,
    ) -> Compilation:
        """Compile an inline template source.

        ``path``, when given, is where relative includes are resolved from;
        the text itself is never read from disk.
        """
        resolved = path.resolve() if path is not None else None
        unit = SourceUnit(name, source, resolved, origin)
        return self._compile_unit(unit, ("inline", name, source, origin, resolved), [])[0]

    # ------------------------------------------------------------------
    # Memo
    # ------------------------------------------------------------------

    def _compile_path(self, path: Path, stack: list[Path]) -> tuple[Compilation, bool]:
        resolved = path.resolve()
        with self._lock:
            cached = self._memo.get(resolved)
        if cached is not None:
            logger.debug("reusing compilation of %s", path)
            return cached, False
        text = path.read_text(encoding="utf-8")
        unit = SourceUnit(str(path), text, resolved)
        return self._compile_unit(unit, resolved, stack)

    def _compile_unit(
        self, unit: SourceUnit, key: object, stack: list[Path]
    ) -> tuple[Compilation, bool]:
        """Compile a unit; the flag is set when the result depends on ``stack``."""
        with self._lock:
            cached = self._memo.get(key)
        if cached is not None:
            logger.debug("reusing compilation of %s", unit.name)
            return cached, False

        logger.debug("compiling %s", unit.name)
        result, contextual = self._run(unit, stack)
        if contextual:
            # Failed through a circular or too deep include chain; not reusable
            return result, True
        with self._lock:
            # Another worker may have finished the same unit first; keep theirs
            return self._memo.setdefault(key, result), False

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(self, unit: SourceUnit, stack: list[Path]) -> tuple[Compilation, bool]:
        sources = {unit.name: unit.text}
        syntax = self.config.syntax(self.syntax_name)
        whitespace = self.whitespace or self.config.whitespace

        template, diagnostics = parse(unit.text, unit.name, syntax, whitespace)
        program = None
        contextual = False
        if not diagnostics:
            table = build_macro_table(template)
            bindings, diagnostics = bind_all(template, table, unit.text)
            inner = [*stack, unit.path] if unit.path is not None else stack
            includes, contextual = self._resolve_includes(
                template, unit, inner, diagnostics, sources
            )
            if not diagnostics:
                program = generate(
                    template,
                    table,
                    bindings,
                    unit=unit.name,
                    escaper=self.config.escaper_for(unit.name),
                    includes=includes,
                )

        if unit.origin is not None:
            diagnostics = [d.through(unit.origin) for d in diagnostics]
        return Compilation(unit, program, tuple(diagnostics), sources), contextual

    def _resolve_includes(
        self,
        template: Template,
        unit: SourceUnit,
        stack: list[Path],
        diagnostics: list[Diagnostic],
        sources: dict[str, str],
    ) -> tuple[dict[Span, RenderProgram], bool]:
        includes: dict[Span, RenderProgram] = {}
        contextual = False
        for node in walk_nodes(template.body):
            if not isinstance(node, Include):
                continue

            found = self.config.find_template(node.path, unit.path)
            if found is None:
                diagnostics.append(
                    Diagnostic(
                        f'template "{node.path}" not found in directories '
                        f"{self.config.describe_dirs()}",
                        node.span,
                    )
                )
                continue

            resolved = found.resolve()
            if resolved in stack:
                contextual = True
                diagnostics.append(Diagnostic(f"circular include of `{node.path}`", node.span))
                continue
            if len(stack) >= self.max_include_depth:
                contextual = True
                diagnostics.append(
                    Diagnostic(
                        f"include depth limit ({self.max_include_depth}) exceeded", node.span
                    )
                )
                continue

            logger.debug("%s includes %s", unit.name, found)
            try:
                dep, dep_contextual = self._compile_path(found, stack)
            except (OSError, UnicodeDecodeError) as exc:
                diagnostics.append(
                    Diagnostic(f"unable to read template `{node.path}`: {exc}", node.span)
                )
                continue
            contextual = contextual or dep_contextual
            sources.update(dep.sources)
            if dep.program is None:
                diagnostics.extend(d.through(node.span) for d in dep.diagnostics)
            else:
                includes[node.span] = dep.program
        return includes, contextual


def compile_template(source: str, name: str = "<input>", config: Config | None = None) -> RenderProgram:
    """Compile inline source, raising TemplateError when it has diagnostics."""
    from stencil.errors import TemplateError

    result = Compiler(config or Config()).compile_source(source, name)
    if result.program is None:
        raise TemplateError(result.diagnostics, result.sources)
    return result.program
