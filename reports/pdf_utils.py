#!/usr/bin/env python3
"""Page and panel helpers for the MIS pipeline PDF report.

matplotlib is optional: it is imported once at module load with the ``Agg``
backend, and only :func:`require_matplotlib` callers fail when it is missing,
so the simulator core and ``--skip-pdf`` runs never need a plotting stack.

Panels take an ``Axes``; pages take an open ``PdfPages`` handle and return the
number of pages they added.
"""

from __future__ import annotations

import os
import shlex
import sys
import textwrap
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

_MPL_IMPORT_ERROR: str | None = None

try:
    os.environ.setdefault("MPLCONFIGDIR", "/tmp/matplotlib")
    Path(os.environ["MPLCONFIGDIR"]).mkdir(parents=True, exist_ok=True)
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from matplotlib.backends.backend_pdf import PdfPages

    HAS_MATPLOTLIB: bool = True
except ImportError as exc:  # pragma: no cover
    plt = None
    PdfPages = None
    HAS_MATPLOTLIB = False
    _MPL_IMPORT_ERROR = f"{type(exc).__name__}: {exc}"

PAGE_SIZE = (11.0, 8.5)
LINES_PER_PAGE = 42
IS_COLOR = "#1f77b4"
VIOLATION_COLOR = "#d62728"


def require_matplotlib() -> None:
    if not HAS_MATPLOTLIB:
        raise RuntimeError(
            "PDF output needs matplotlib; install it or pass --skip-pdf "
            f"({_MPL_IMPORT_ERROR or 'not installed'})"
        )


def command_string(argv: Sequence[str] | None = None) -> str:
    """Shell-quoted interpreter + argv of the current run."""
    args = list(sys.argv if argv is None else argv)
    return " ".join(shlex.quote(x) for x in [sys.executable, *args])


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

def text_pages(pdf: Any, lines: Iterable[str], *, width: int = 110, fontsize: int = 10) -> int:
    """Monospace text, wrapped at *width*, split into pages of ``LINES_PER_PAGE``."""
    require_matplotlib()
    wrapped: list[str] = []
    for line in lines:
        wrapped.extend(textwrap.wrap(line, width=width, subsequent_indent="    ") or [""])
    chunks = [wrapped[k:k + LINES_PER_PAGE] for k in range(0, len(wrapped), LINES_PER_PAGE)] or [[]]
    for chunk in chunks:
        fig = plt.figure(figsize=PAGE_SIZE)
        fig.text(0.05, 0.95, "\n".join(chunk), va="top", ha="left", family="monospace", fontsize=fontsize)
        pdf.savefig(fig)
        plt.close(fig)
    return len(chunks)


def manifest_lines(payload: Mapping[str, Any], command: str = "") -> list[str]:
    """Run-defining settings, problem size and per-stage losses of a pipeline payload."""
    problem = payload["problem"]
    lines = ["MIS PIPELINE MANIFEST", "=" * 60, ""]
    lines += [f"  {k:<18}: {v}" for k, v in payload["settings"].items()]
    lines += [
        "",
        f"  {'atoms':<18}: {problem['num_atoms']}",
        f"  {'blockade edges':<18}: {len(problem['edges'])}",
        f"  {'subspace dim':<18}: {problem['subspace_dim']}",
        f"  {'exact MIS size':<18}: {problem['mis_size']}",
        f"  {'MIS configs':<18}: {', '.join(problem['mis_configs_qn_to_q0'])}",
        "",
    ]
    for name, stage in payload["stages"].items():
        if "optimizer" in stage:
            opt = stage["optimizer"]
            lines.append(
                f"  {name:<18}: loss {opt['initial_loss']:.4f} -> {opt['loss_best']:.4f} "
                f"({opt['method']}, nfev={opt['nfev']})"
            )
        else:
            lines.append(f"  {name:<18}: <sum n> = {stage['rydberg_density_sum']:.4f}")
    if command:
        lines += ["", "  command:", f"    {command}"]
    return lines


def figure_page(pdf: Any, fig: Any) -> int:
    pdf.savefig(fig)
    plt.close(fig)
    return 1


# ---------------------------------------------------------------------------
# Panels
# ---------------------------------------------------------------------------

def draw_unit_disk_graph(
    ax: Any,
    points: Sequence[Sequence[float]],
    edges: Sequence[Sequence[int]],
    *,
    highlight: str | None = None,
    title: str = "",
) -> None:
    """Atoms and blockade edges; *highlight* is a ``q_(n-1)…q_0`` bitstring of excited atoms."""
    n = len(points)
    for i, j in edges:
        ax.plot([points[i][0], points[j][0]], [points[i][1], points[j][1]], color="#999999", lw=1.0, zorder=1)
    excited = [bool(highlight) and highlight[n - 1 - k] == "1" for k in range(n)]
    ax.scatter(
        [p[0] for p in points],
        [p[1] for p in points],
        s=220,
        c=[IS_COLOR if e else "white" for e in excited],
        edgecolors="black",
        zorder=2,
    )
    for k, p in enumerate(points):
        ax.text(p[0], p[1], str(k), ha="center", va="center", fontsize=8, zorder=3)
    ax.set_aspect("equal")
    ax.set_xlabel("x (μm)")
    ax.set_ylabel("y (μm)")
    if title:
        ax.set_title(title, fontsize=10)


def plot_pulses(ax: Any, curves: Sequence[tuple[Mapping[str, Sequence[float]], str]], ylabel: str) -> None:
    """Waveform curves stored as ``{"time", "value_over_2pi_mhz"}``."""
    for curve, label in curves:
        ax.plot(curve["time"], curve["value_over_2pi_mhz"], label=label)
    ax.set_xlabel("t (μs)")
    ax.set_ylabel(ylabel)
    ax.grid(alpha=0.3)
    if len(curves) > 1:
        ax.legend(fontsize=8)


def plot_bitstring_bars(ax: Any, rows: Sequence[Mapping[str, Any]], title: str) -> None:
    """Most-probable bitstrings; blockade violations in red."""
    xs = list(range(len(rows)))
    ax.bar(
        xs,
        [r["probability"] for r in rows],
        color=[IS_COLOR if r["is_independent_set"] else VIOLATION_COLOR for r in rows],
    )
    ax.set_xticks(xs)
    ax.set_xticklabels([r["bitstring_qn_to_q0"] for r in rows], rotation=90, fontsize=6, family="monospace")
    ax.set_ylabel("probability")
    ax.set_title(title, fontsize=10)


def key_value_table(ax: Any, title: str, values: Mapping[str, Any]) -> None:
    ax.axis("off")
    ax.set_title(title, fontsize=9, pad=6)
    tbl = ax.table(
        cellText=[[str(k), f"{v:.4g}" if isinstance(v, float) else str(v)] for k, v in values.items()],
        colLabels=["quantity", "value"],
        loc="center",
        cellLoc="center",
    )
    tbl.auto_set_font_size(False)
    tbl.set_fontsize(7)
    tbl.scale(1.0, 1.3)


def plot_loss_trace(ax: Any, optimizer: Mapping[str, Any]) -> None:
    trace = list(optimizer["loss_trace"])
    ax.plot(range(len(trace)), trace, lw=1.0)
    ax.axhline(optimizer["loss_best"], color="#777777", ls="--", lw=0.8)
    ax.set_xlabel("loss evaluation")
    ax.set_ylabel("−⟨Σ n⟩")
    ax.set_title(f"{optimizer['method']} trace", fontsize=10)
    ax.grid(alpha=0.3)
