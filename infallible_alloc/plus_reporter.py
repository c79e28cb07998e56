#!/usr/bin/env python3
"""
infallible_alloc/plus_reporter.py
═════════════════════════════════

Rust-style colourful diagnostic sink for the infallible-allocation lint.

Output formats
──────────────
  • Terminal : colourful rustc-style rendering with source excerpts
  • Plain    : uncoloured rustc-style text (non-TTY default)
  • JSON     : one JSON object per diagnostic, one per line
  • SARIF    : written to a file if $REPORT_GENERATE_SARIF is set, or
               to the stream with ``output="sarif"``
  • HTML     : written to a file if $REPORT_GENERATE_HTML is set

Usage
─────
    from infallible_alloc.plus_reporter import Reporter, Severity

    with Reporter() as rep:
        (rep.diagnostic(Severity.WARNING, "infallible_allocation",
                        "`alloc::vec::Vec::<u8>::push` can perform an "
                        "infallible allocation")
            .at(Location("src/lib.rs", 14, 9, 14, 20))
            .note("which may call alloc_error_handler")
            .emit())
"""

from __future__ import annotations

import enum
import json
import os
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    TextIO,
    Union,
)

import jinja2
from termcolor import colored

from infallible_alloc.access_model import Location
from infallible_alloc.report import AllocationDiagnostic

OUTPUT_FORMATS = ("text", "plain", "json", "sarif")


# ═════════════════════════════════════════════════════════════════════════
#  SEVERITY ENUM
# ═════════════════════════════════════════════════════════════════════════

class Severity(enum.Enum):
    """
    Diagnostic severity levels.

    Each carries:
      • label       — the word printed in the header
      • color       — termcolor colour name
      • sarif_level — SARIF 2.1.0 ``level`` string
    """

    ERROR = ("error", "red", "error")
    WARNING = ("warning", "yellow", "warning")

    def __init__(self, label: str, color: str, sarif_level: str) -> None:
        self.label = label
        self.color = color
        self.sarif_level = sarif_level

    @classmethod
    def from_string(cls, s: str) -> Severity:
        """Parse a severity from its label (case-insensitive)."""
        s_low = s.strip().lower()
        for member in cls:
            if member.label == s_low:
                return member
        return cls.WARNING


# ═════════════════════════════════════════════════════════════════════════
#  DATA STRUCTURES
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class DiagnosticPart:
    """A sub-part of a diagnostic: the main message or a note."""
    kind: str  # "primary" or "note"
    message: str = ""
    location: Optional[Location] = None


@dataclass
class ReporterStats:
    """Aggregate counts per severity."""
    counts: Dict[str, int] = field(default_factory=dict)

    def record(self, severity: Severity) -> None:
        self.counts[severity.label] = self.counts.get(severity.label, 0) + 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def error(self) -> int:
        return self.counts.get("error", 0)

    @property
    def warning(self) -> int:
        return self.counts.get("warning", 0)

    def summary_line(self) -> str:
        if not self.total:
            return "no diagnostics emitted"
        parts = []
        for member in Severity:
            n = self.counts.get(member.label, 0)
            if n:
                plural = "s" if n != 1 else ""
                parts.append(f"{n} {member.label}{plural}")
        return "; ".join(parts) + f" ({self.total} total)"


# ═════════════════════════════════════════════════════════════════════════
#  DIAGNOSTIC (builder pattern)
# ═════════════════════════════════════════════════════════════════════════

class Diagnostic:
    """
    Incrementally constructed diagnostic.

    Usage::

        (reporter.diagnostic(Severity.WARNING, "infallible_allocation", "…")
            .at(call_site)
            .note("called from `demo::run::<u8>`", caller_site)
            .emit())
    """

    def __init__(
        self,
        reporter: Reporter,
        severity: Severity,
        error_id: str,
        message: str,
    ) -> None:
        self._reporter = reporter
        self.severity = severity
        self.error_id = error_id
        self.message = message
        self.primary = DiagnosticPart(kind="primary", message=message)
        self.notes: List[DiagnosticPart] = []

    # ── builder methods (all return self for chaining) ───────────────

    def at(self, location: Location) -> Diagnostic:
        """Set the primary source location."""
        self.primary.location = location
        return self

    def note(self, message: str, location: Optional[Location] = None) -> Diagnostic:
        """Append a note sub-diagnostic."""
        if location is not None and location.is_dummy:
            location = None
        self.notes.append(DiagnosticPart(kind="note", message=message, location=location))
        return self

    def emit(self) -> None:
        """Send the diagnostic to the reporter.  Do not reuse the builder."""
        self._reporter._accept(self)  # noqa: SLF001

    # ── convenience ──────────────────────────────────────────────────

    @property
    def location(self) -> Optional[Location]:
        return self.primary.location

    def header(self) -> str:
        return f"{self.severity.label}[{self.error_id}]: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        loc = self.primary.location
        return {
            "severity": self.severity.label,
            "id": self.error_id,
            "message": self.message,
            "location": str(loc) if loc else None,
            "notes": [
                {"message": n.message, "location": str(n.location) if n.location else None}
                for n in self.notes
            ],
        }


# ═════════════════════════════════════════════════════════════════════════
#  TERMINAL RENDERER  (Rust-style colourful output)
# ═════════════════════════════════════════════════════════════════════════

class _TerminalRenderer:
    """Render diagnostics to a terminal with colours."""

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        lines: List[str] = []

        # ── header: severity[lint]: message ──────────────────────────
        sev_str = colored(
            f"{diag.severity.label}[{diag.error_id}]",
            diag.severity.color,
            attrs=["bold"],
        )
        lines.append(f"{sev_str}: {colored(diag.message, attrs=['bold'])}")

        # ── primary location with source excerpt ─────────────────────
        loc = diag.primary.location
        arrow = colored("-->", "blue", attrs=["bold"])
        if loc and not loc.is_dummy:
            lines.append(f"  {arrow} {loc}")
            lines.extend(self._render_span(loc, diag.severity))

        # ── notes ────────────────────────────────────────────────────
        for note in diag.notes:
            prefix = colored("note", "cyan", attrs=["bold"])
            lines.append(f"  = {prefix}: {note.message}")
            if note.location:
                lines.append(f"    {arrow} {note.location}")

        lines.append("")
        self._stream.write("\n".join(lines) + "\n")
        self._stream.flush()

    def _render_span(self, loc: Location, severity: Severity) -> List[str]:
        """Source line with a caret underline; nothing if unreadable."""
        src_text = _read_source_line(loc.file, loc.line)
        if src_text is None:
            return []
        gutter_w = len(str(loc.line)) + 1
        pipe = colored("|", "blue", attrs=["bold"])
        line_prefix = colored(str(loc.line).rjust(gutter_w), "blue", attrs=["bold"])

        start = max(loc.column, 1)
        if loc.end_line == loc.line and loc.end_column > start:
            span_len = loc.end_column - start
        else:
            span_len = max(len(src_text) - start + 1, 1)
        pad = " " * (start - 1)
        marker = colored("^" * span_len, severity.color, attrs=["bold"])
        blank_gutter = " " * gutter_w
        return [
            f" {blank_gutter} {pipe}",
            f" {line_prefix} {pipe} {src_text}",
            f" {blank_gutter} {pipe} {pad}{marker}",
        ]


def _read_source_line(filepath: str, line: int) -> Optional[str]:
    if not filepath or line <= 0:
        return None
    try:
        with open(filepath, "r", errors="replace") as fh:
            for idx, text in enumerate(fh, 1):
                if idx == line:
                    return text.rstrip("\n\r")
    except OSError:
        return None
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PLAIN AND JSON RENDERERS  (for log files / non-TTY / tooling)
# ═════════════════════════════════════════════════════════════════════════

class _PlainRenderer:
    """Non-coloured rustc-style text."""

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        lines = [diag.header()]
        if diag.primary.location and not diag.primary.location.is_dummy:
            lines.append(f"  --> {diag.primary.location}")
        for note in diag.notes:
            lines.append(f"  = note: {note.message}")
            if note.location:
                lines.append(f"    --> {note.location}")
        self._stream.write("\n".join(lines) + "\n")
        self._stream.flush()


class _JsonRenderer:
    """One JSON object per line."""

    def __init__(self, stream: TextIO = sys.stdout) -> None:
        self._stream = stream

    def render(self, diag: Diagnostic) -> None:
        self._stream.write(json.dumps(diag.to_dict(), sort_keys=True) + "\n")
        self._stream.flush()


class _NullRenderer:
    """Used when the stream only receives the SARIF document at the end."""

    def render(self, diag: Diagnostic) -> None:
        pass


# ═════════════════════════════════════════════════════════════════════════
#  SARIF 2.1.0 BUILDER
# ═════════════════════════════════════════════════════════════════════════

def _sarif_physical(loc: Location) -> Dict[str, Any]:
    region: Dict[str, Any] = {"startLine": loc.line}
    if loc.column:
        region["startColumn"] = loc.column
    if loc.end_line:
        region["endLine"] = loc.end_line
    if loc.end_column:
        region["endColumn"] = loc.end_column
    return {"artifactLocation": {"uri": loc.file}, "region": region}


class _SarifBuilder:
    """Accumulates diagnostics and produces a SARIF 2.1.0 document."""

    SARIF_VERSION = "2.1.0"
    SARIF_SCHEMA = (
        "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/"
        "Schemata/sarif-schema-2.1.0.json"
    )

    def __init__(self) -> None:
        self._results: List[Dict[str, Any]] = []
        self._rules: Dict[str, Dict[str, Any]] = {}

    def add(self, diag: Diagnostic) -> None:
        if diag.error_id not in self._rules:
            self._rules[diag.error_id] = {
                "id": diag.error_id,
                "shortDescription": {"text": "call reaches an allocation that aborts on failure"},
            }

        result: Dict[str, Any] = {
            "ruleId": diag.error_id,
            "level": diag.severity.sarif_level,
            "message": {"text": diag.message},
        }
        loc = diag.primary.location
        if loc and not loc.is_dummy:
            result["locations"] = [{"physicalLocation": _sarif_physical(loc)}]

        related: List[Dict[str, Any]] = []
        for idx, note in enumerate(diag.notes):
            entry: Dict[str, Any] = {"id": idx, "message": {"text": note.message}}
            if note.location:
                entry["physicalLocation"] = _sarif_physical(note.location)
            related.append(entry)
        if related:
            result["relatedLocations"] = related

        self._results.append(result)

    def to_json(self, tool_name: str, version: str) -> str:
        sarif: Dict[str, Any] = {
            "$schema": self.SARIF_SCHEMA,
            "version": self.SARIF_VERSION,
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": tool_name,
                            "version": version,
                            "rules": list(self._rules.values()),
                        }
                    },
                    "results": self._results,
                }
            ],
        }
        return json.dumps(sarif, indent=2)

    def write(self, path: str, tool_name: str, version: str) -> None:
        Path(path).write_text(self.to_json(tool_name, version), encoding="utf-8")


# ═════════════════════════════════════════════════════════════════════════
#  HTML BUILDER
# ═════════════════════════════════════════════════════════════════════════

class _HtmlBuilder:
    """Accumulates diagnostics and renders an HTML file via Jinja2."""

    def __init__(self) -> None:
        self._diagnostics: List[Dict[str, Any]] = []

    def add(self, diag: Diagnostic) -> None:
        loc = diag.primary.location
        self._diagnostics.append({
            "severity": diag.severity.label,
            "error_id": diag.error_id,
            "message": diag.message,
            "location": str(loc) if loc and not loc.is_dummy else "",
            "notes": [
                {"message": n.message, "location": str(n.location) if n.location else ""}
                for n in diag.notes
            ],
        })

    def render(self, template_path: Optional[str] = None) -> str:
        env = jinja2.Environment(autoescape=True)
        tmpl = env.from_string(self._load_template(template_path))
        return tmpl.render(diagnostics=self._diagnostics, total=len(self._diagnostics))

    def write(self, path: str, template_path: Optional[str] = None) -> None:
        Path(path).write_text(self.render(template_path), encoding="utf-8")

    @staticmethod
    def _load_template(template_path: Optional[str]) -> str:
        """Explicit argument, then $REPORT_HTML_TEMPLATE, then the built-in one."""
        if template_path:
            return Path(template_path).read_text(encoding="utf-8")
        env_tmpl = os.environ.get("REPORT_HTML_TEMPLATE", "")
        if env_tmpl and Path(env_tmpl).is_file():
            return Path(env_tmpl).read_text(encoding="utf-8")
        return _DEFAULT_HTML_TEMPLATE


# ═════════════════════════════════════════════════════════════════════════
#  REPORTER  (main entry point)
# ═════════════════════════════════════════════════════════════════════════

_Renderer = Union[_TerminalRenderer, _PlainRenderer, _JsonRenderer, _NullRenderer]


class Reporter:
    """
    Central diagnostic dispatcher.

    Use as a context manager::

        with Reporter() as rep:
            rep.diagnostic(Severity.WARNING, "id", "msg").at(...).emit()
        # finish() is called automatically
    """

    def __init__(
        self,
        stream: TextIO = sys.stderr,
        colour: Optional[bool] = None,
        output: str = "text",
        tool_name: str = "infallible-alloc-lint",
        tool_version: str = "0.1.0",
        summary: bool = True,
    ) -> None:
        if output not in OUTPUT_FORMATS:
            raise ValueError(f"unknown output format {output!r}")
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.output = output
        self.stats = ReporterStats()
        self.diagnostics: List[Diagnostic] = []
        self._stream = stream
        self._summary = summary and output in ("text", "plain")

        # ── choose renderer ──────────────────────────────────────────
        self._renderer: _Renderer
        if output == "json":
            self._renderer = _JsonRenderer(stream)
        elif output == "sarif":
            self._renderer = _NullRenderer()
        else:
            use_colour = colour if colour is not None else (
                output == "text" and hasattr(stream, "isatty") and stream.isatty()
            )
            if use_colour:
                self._renderer = _TerminalRenderer(stream)
            else:
                self._renderer = _PlainRenderer(stream)

        # ── optional writers (driven by env vars) ────────────────────
        self._sarif: Optional[_SarifBuilder] = None
        self._sarif_path = os.environ.get("REPORT_GENERATE_SARIF", "")
        if self._sarif_path or output == "sarif":
            self._sarif = _SarifBuilder()

        self._html: Optional[_HtmlBuilder] = None
        self._html_path = os.environ.get("REPORT_GENERATE_HTML", "")
        if self._html_path:
            self._html = _HtmlBuilder()

    # ── context manager ──────────────────────────────────────────────

    def __enter__(self) -> Reporter:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.finish()

    # ── builder entry point ──────────────────────────────────────────

    def diagnostic(self, severity: Severity, error_id: str, message: str) -> Diagnostic:
        """Create a new :class:`Diagnostic` builder bound to this reporter."""
        return Diagnostic(self, severity, error_id, message)

    def _accept(self, diag: Diagnostic) -> None:
        # Stats first, so finish() sees the real counts even if a renderer raises.
        self.stats.record(diag.severity)
        self.diagnostics.append(diag)
        self._renderer.render(diag)
        if self._sarif is not None:
            self._sarif.add(diag)
        if self._html is not None:
            self._html.add(diag)

    # ── finalisation ─────────────────────────────────────────────────

    def finish(self) -> ReporterStats:
        """Print the summary line and write SARIF / HTML if configured."""
        if self._summary:
            summary = self.stats.summary_line()
            if isinstance(self._renderer, _TerminalRenderer):
                color = "red" if self.stats.error else ("yellow" if self.stats.total else "green")
                self._stream.write(colored(f"  ╰─ {summary}", color, attrs=["bold"]) + "\n")
            else:
                self._stream.write(f"  {summary}\n")

        if self._sarif is not None:
            if self.output == "sarif":
                self._stream.write(self._sarif.to_json(self.tool_name, self.tool_version) + "\n")
            if self._sarif_path:
                try:
                    self._sarif.write(self._sarif_path, self.tool_name, self.tool_version)
                except OSError as exc:
                    print(f"plus_reporter: failed to write SARIF: {exc}", file=sys.stderr)

        if self._html is not None:
            try:
                self._html.write(self._html_path)
            except OSError as exc:
                print(f"plus_reporter: failed to write HTML: {exc}", file=sys.stderr)

        return self.stats


def emit_allocation_diagnostics(
    reporter: Reporter,
    diagnostics: Iterable[AllocationDiagnostic],
    severity: Severity = Severity.WARNING,
) -> int:
    """Feed lint diagnostics to *reporter*; return how many were emitted."""
    count = 0
    for record in diagnostics:
        builder = reporter.diagnostic(severity, record.lint, record.message).at(record.location)
        for note in record.notes:
            builder.note(note.message, note.location)
        builder.emit()
        count += 1
    return count


# ═════════════════════════════════════════════════════════════════════════
#  DEFAULT HTML TEMPLATE
# ═════════════════════════════════════════════════════════════════════════

_DEFAULT_HTML_TEMPLATE = textwrap.dedent("""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Infallible Allocation Report</title>
  <style>
    :root { --bg: #1e1e2e; --fg: #cdd6f4; --surface: #313244;
            --red: #f38ba8; --yellow: #f9e2af; --cyan: #89dceb;
            --blue: #89b4fa; --border: #45475a; }
    body { font-family: 'Fira Code', monospace; background: var(--bg);
           color: var(--fg); padding: 2rem; }
    .card { background: var(--surface); border: 1px solid var(--border);
            border-radius: 8px; padding: 1rem; margin-bottom: 1rem; }
    .sev-error   { border-left: 4px solid var(--red); }
    .sev-warning { border-left: 4px solid var(--yellow); }
    .loc  { color: var(--blue); font-size: 0.9em; }
    .note { color: var(--cyan); margin-top: 0.3rem; font-size: 0.9em; }
  </style>
</head>
<body>
  <h1>Infallible Allocation Report</h1>
  {% for d in diagnostics %}
  <div class="card sev-{{ d.severity }}">
    <code>{{ d.severity }}[{{ d.error_id }}]</code>
    {% if d.location %}<span class="loc">{{ d.location }}</span>{% endif %}
    <div>{{ d.message }}</div>
    {% for n in d.notes %}
      <div class="note">note: {{ n.message }}{% if n.location %} ({{ n.location }}){% endif %}</div>
    {% endfor %}
  </div>
  {% endfor %}
  <p>{{ total }} diagnostic{{ 's' if total != 1 else '' }} emitted.</p>
</body>
</html>
""")


__all__ = [
    "OUTPUT_FORMATS",
    "Severity",
    "DiagnosticPart",
    "Diagnostic",
    "Reporter",
    "ReporterStats",
    "emit_allocation_diagnostics",
]
