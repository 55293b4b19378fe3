#!/usr/bin/env python3
"""End-to-end MIS pipeline on a dropout square lattice of Rydberg atoms.

Flow:
1) Build the diagonal-connected unit-disk grid graph (seeded dropout) and its
   blockade subspace; solve the MIS exactly by enumeration for reference.
2) Adiabatic sweep (ODE propagator, full space by default), then blockade
   repair of the most probable and sampled bitstrings.
3) QAOA-like piecewise-constant layers in the subspace (Krylov propagator),
   durations optimized with a derivative-free SciPy method.
4) Smoothed piecewise-linear pulses in the subspace (ODE propagator), three
   detuning knots optimized the same way.
5) Emit JSON + compact PDF artifact.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

# ---------------------------------------------------------------------------
# Path setup: this file lives at pipelines/mis_pipeline.py
# ---------------------------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from reports.pdf_utils import (
    PAGE_SIZE,
    PdfPages,
    command_string,
    draw_unit_disk_graph,
    figure_page,
    key_value_table,
    manifest_lines,
    plot_bitstring_bars,
    plot_loss_trace,
    plot_pulses,
    plt,
    require_matplotlib,
    text_pages,
)
from src.rydberg.ai_log import ai_log
from src.rydberg.config import (
    BLOCKADE_RADIUS,
    DROPOUT_FRACTION,
    LATTICE_SCALE,
    OPTIMIZER_METHODS,
    T_MAX,
    OptimizerConfig,
)
from src.rydberg.geometry import graph_edges
from src.rydberg.observables import (
    exact_mis,
    independent_set_probabilities,
    is_independent_set,
    most_probable,
    num_mis_violation,
    rydberg_density_sum,
    sample,
)
from src.rydberg.postprocessing import mis_postprocessing, repair
from src.rydberg.protocols import (
    MISProblem,
    adiabatic_waveforms,
    loss_piecewise_constant,
    loss_piecewise_linear,
    piecewise_linear_detuning,
    qaoa_waveforms,
    run_adiabatic,
    scalar_loss,
    smoothed_rabi,
)
from src.rydberg.register import RydbergRegister, bitstring_qn1_to_q0
from src.rydberg.variational import OptimizationResult, optimize
from src.rydberg.waveforms import Waveform


def _parse_float_list(raw: str) -> list[float]:
    text = str(raw).strip()
    if text.startswith("["):
        return [float(x) for x in json.loads(text)]
    return [float(x) for x in text.split(",") if x.strip()]


def _waveform_curve(waveform: Waveform, num: int = 301) -> dict[str, list[float]]:
    times = np.linspace(0.0, waveform.duration, int(num))
    return {
        "time": [float(t) for t in times],
        "value_over_2pi_mhz": [float(v) / (2.0 * np.pi) for v in waveform.sample(times)],
    }


def _register_summary(
    register: RydbergRegister,
    problem: MISProblem,
    *,
    nlargest: int,
) -> dict[str, Any]:
    n = problem.n_sites
    top_rows: list[dict[str, Any]] = []
    for config, prob in most_probable(register, nlargest):
        fixed = mis_postprocessing(config, problem.graph)
        top_rows.append(
            {
                "bitstring_qn_to_q0": bitstring_qn1_to_q0(n, config),
                "probability": float(prob),
                "size": int(bin(config).count("1")),
                "is_independent_set": bool(is_independent_set(config, problem.graph)),
                "num_violations": int(num_mis_violation(config, problem.graph)),
                "postprocessed_qn_to_q0": bitstring_qn1_to_q0(n, fixed),
                "postprocessed_size": int(bin(fixed).count("1")),
            }
        )
    return {
        "rydberg_density_sum": float(rydberg_density_sum(register)),
        "independent_set_probabilities": [float(p) for p in independent_set_probabilities(register, problem.graph)],
        "most_probable": top_rows,
    }


def _sample_summary(
    register: RydbergRegister,
    problem: MISProblem,
    *,
    num_samples: int,
    rng: np.random.Generator,
    mis_size: int,
) -> dict[str, Any]:
    draws = sample(register, num_samples, rng)
    raw_sizes = np.array([bin(c).count("1") for c, _ in draws], dtype=int)
    repaired = [repair(c, problem.graph) for c, _ in draws]
    fixed_sizes = np.array([bin(c).count("1") for c in repaired], dtype=int)
    n_violating = sum(1 for c, _ in draws if not is_independent_set(c, problem.graph))
    return {
        "num_samples": int(num_samples),
        "num_violating": int(n_violating),
        "mean_size_raw": float(np.mean(raw_sizes)) if raw_sizes.size else None,
        "mean_size_repaired": float(np.mean(fixed_sizes)) if fixed_sizes.size else None,
        "hit_rate_mis_repaired": float(np.mean(fixed_sizes == mis_size)) if fixed_sizes.size else None,
    }


def _optimizer_payload(result: OptimizationResult) -> dict[str, Any]:
    return {
        "method": result.method,
        "success": bool(result.success),
        "message": str(result.message),
        "x_best": [float(v) for v in result.x],
        "loss_best": float(result.loss),
        "initial_loss": float(result.initial_loss),
        "nfev": int(result.nfev),
        "nit": int(result.nit),
        "n_invalid": int(result.n_invalid),
        "elapsed_sec": float(result.elapsed_sec),
        "loss_trace": [float(v) for v in result.trace.losses],
    }


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def _run_adiabatic_stage(
    problem: MISProblem,
    args: argparse.Namespace,
    *,
    rng: np.random.Generator,
    mis_size: int,
) -> dict[str, Any]:
    use_subspace = str(args.adiabatic_space) == "subspace"
    ai_log("mis_adiabatic_start", space=str(args.adiabatic_space), t_max=float(args.t_max))
    result = run_adiabatic(problem, t_max=float(args.t_max), use_subspace=use_subspace)
    rabi, detuning = adiabatic_waveforms(float(args.t_max))
    summary = _register_summary(result.register, problem, nlargest=int(args.nlargest))
    samples = _sample_summary(
        result.register,
        problem,
        num_samples=int(args.num_samples),
        rng=rng,
        mis_size=mis_size,
    )
    ai_log(
        "mis_adiabatic_done",
        method=result.method,
        rydberg_density_sum=summary["rydberg_density_sum"],
        num_violating=samples["num_violating"],
    )
    return {
        "space": str(args.adiabatic_space),
        "method": result.method,
        "stats": dict(result.stats),
        "rabi": _waveform_curve(rabi),
        "detuning": _waveform_curve(detuning),
        "samples": samples,
        **summary,
    }


def _run_qaoa_stage(problem: MISProblem, args: argparse.Namespace, config: OptimizerConfig) -> dict[str, Any]:
    x0 = [float(args.qaoa_init_duration)] * (2 * int(args.qaoa_layers))
    ai_log("mis_qaoa_start", layers=int(args.qaoa_layers), x0=x0)
    result = optimize(x0, scalar_loss(problem, "piecewise_constant"), config)
    loss0, reg0 = loss_piecewise_constant(problem, x0)
    loss_opt, reg_opt = loss_piecewise_constant(problem, result.x)
    rabi, detuning, clocks = qaoa_waveforms(result.x)
    ai_log("mis_qaoa_done", initial_loss=float(loss0), optimized_loss=float(loss_opt))
    return {
        "x0": x0,
        "initial": _register_summary(reg0, problem, nlargest=int(args.nlargest)),
        "optimized": _register_summary(reg_opt, problem, nlargest=int(args.nlargest)),
        "optimizer": _optimizer_payload(result),
        "clocks": [float(t) for t in clocks],
        "rabi": _waveform_curve(rabi),
        "detuning": _waveform_curve(detuning),
    }


def _run_linear_stage(problem: MISProblem, args: argparse.Namespace, config: OptimizerConfig) -> dict[str, Any]:
    x0 = _parse_float_list(args.linear_x0)
    t_max = float(args.t_max)
    ai_log("mis_linear_start", x0=x0, t_max=t_max)
    result = optimize(x0, scalar_loss(problem, "piecewise_linear", t_max=t_max), config)
    loss0, reg0, det0 = loss_piecewise_linear(problem, x0, t_max=t_max)
    loss_opt, reg_opt, det_opt = loss_piecewise_linear(problem, result.x, t_max=t_max)
    ai_log("mis_linear_done", initial_loss=float(loss0), optimized_loss=float(loss_opt))
    return {
        "x0": x0,
        "initial": _register_summary(reg0, problem, nlargest=int(args.nlargest)),
        "optimized": _register_summary(reg_opt, problem, nlargest=int(args.nlargest)),
        "optimizer": _optimizer_payload(result),
        "rabi": _waveform_curve(smoothed_rabi(t_max)),
        "detuning_initial": _waveform_curve(det0),
        "detuning_initial_unsmoothed": _waveform_curve(piecewise_linear_detuning(x0, t_max)),
        "detuning_optimized": _waveform_curve(det_opt),
    }


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def _write_pipeline_pdf(pdf_path: Path, payload: dict[str, Any], run_command: str) -> int:
    """Write the report and return its page count."""
    require_matplotlib()
    problem = payload["problem"]
    stages = payload["stages"]
    mis_configs = problem["mis_configs_qn_to_q0"]

    with PdfPages(str(pdf_path)) as pdf:
        pages = text_pages(pdf, manifest_lines(payload, run_command))

        fig, ax = plt.subplots(figsize=(8.5, 8.5))
        draw_unit_disk_graph(
            ax,
            problem["points"],
            problem["edges"],
            highlight=(mis_configs[0] if mis_configs else None),
            title=f"Unit-disk graph, R_b = {payload['settings']['radius']} μm (one MIS filled)",
        )
        pages += figure_page(pdf, fig)

        if "adiabatic" in stages:
            st = stages["adiabatic"]
            fig, axes = plt.subplots(2, 2, figsize=PAGE_SIZE)
            plot_pulses(axes[0, 0], [(st["rabi"], "Ω")], "Ω/2π (MHz)")
            plot_pulses(axes[0, 1], [(st["detuning"], "Δ")], "Δ/2π (MHz)")
            plot_bitstring_bars(axes[1, 0], st["most_probable"], f"Adiabatic ({st['space']}): most probable")
            key_value_table(axes[1, 1], "Sampled bitstrings", st["samples"])
            fig.tight_layout()
            pages += figure_page(pdf, fig)

        for key, title in (("qaoa", "Piecewise-constant layers"), ("linear", "Smoothed piecewise-linear")):
            if key not in stages:
                continue
            st = stages[key]
            fig, axes = plt.subplots(2, 2, figsize=PAGE_SIZE)
            plot_pulses(axes[0, 0], [(st["rabi"], "Ω")], "Ω/2π (MHz)")
            if key == "linear":
                detuning_curves = [
                    (st["detuning_initial_unsmoothed"], "initial (unsmoothed)"),
                    (st["detuning_initial"], "initial"),
                    (st["detuning_optimized"], "optimized"),
                ]
            else:
                detuning_curves = [(st["detuning"], "optimized")]
            plot_pulses(axes[0, 1], detuning_curves, "Δ/2π (MHz)")
            plot_bitstring_bars(axes[1, 0], st["optimized"]["most_probable"], f"{title}: optimized")
            plot_loss_trace(axes[1, 1], st["optimizer"])
            fig.tight_layout()
            pages += figure_page(pdf, fig)
    return pages


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rydberg-atom MIS pipeline (adiabatic, QAOA, smoothed pulses).")
    parser.add_argument("--seed", type=int, default=42, help="Seed for the lattice dropout.")
    parser.add_argument("--nx", type=int, default=4, help="Lattice columns.")
    parser.add_argument("--ny", type=int, default=4, help="Lattice rows.")
    parser.add_argument("--scale", type=float, default=LATTICE_SCALE, help="Lattice constant (μm).")
    parser.add_argument("--dropout", type=float, default=DROPOUT_FRACTION, help="Fraction of sites removed.")
    parser.add_argument("--radius", type=float, default=BLOCKADE_RADIUS, help="Blockade radius (μm).")
    parser.add_argument("--t-max", type=float, default=T_MAX, help="Total pulse time (μs).")

    parser.add_argument("--skip-adiabatic", action="store_true")
    parser.add_argument(
        "--adiabatic-space",
        choices=["fullspace", "subspace"],
        default="fullspace",
        help="Basis for the adiabatic run (fullspace shows blockade violations and their repair).",
    )
    parser.add_argument("--num-samples", type=int, default=1000)
    parser.add_argument("--sample-seed", type=int, default=7)
    parser.add_argument("--nlargest", type=int, default=20, help="Bitstrings kept per histogram.")

    parser.add_argument("--skip-qaoa", action="store_true")
    parser.add_argument("--qaoa-layers", type=int, default=3)
    parser.add_argument("--qaoa-init-duration", type=float, default=0.1)

    parser.add_argument("--skip-linear", action="store_true")
    parser.add_argument("--linear-x0", type=str, default="0.1,0.8,0.8", help="Initial detuning knots (units of Δ0).")

    parser.add_argument("--optimizer-method", choices=list(OPTIMIZER_METHODS), default="Nelder-Mead")
    parser.add_argument("--optimizer-maxiter", type=int, default=200)

    parser.add_argument("--output-json", type=Path, default=None)
    parser.add_argument("--output-pdf", type=Path, default=None)
    parser.add_argument("--skip-pdf", action="store_true")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    ai_log("mis_main_start", settings=vars(args))
    run_command = command_string()
    artifacts_dir = REPO_ROOT / "artifacts"
    json_dir = artifacts_dir / "json"
    pdf_dir = artifacts_dir / "pdf"
    json_dir.mkdir(parents=True, exist_ok=True)
    pdf_dir.mkdir(parents=True, exist_ok=True)

    tag = f"mis_{args.nx}x{args.ny}_seed{args.seed}"
    output_json = args.output_json or (json_dir / f"{tag}.json")
    output_pdf = args.output_pdf or (pdf_dir / f"{tag}.pdf")

    problem = MISProblem.dropout_lattice(
        np.random.default_rng(int(args.seed)),
        nx_sites=int(args.nx),
        ny_sites=int(args.ny),
        scale=float(args.scale),
        dropout=float(args.dropout),
        radius=float(args.radius),
    )
    mis_size, mis_configs = exact_mis(problem.graph)
    ai_log(
        "mis_problem_built",
        num_atoms=problem.n_sites,
        num_edges=problem.graph.number_of_edges(),
        subspace_dim=problem.subspace.dim,
        mis_size=mis_size,
        num_mis_configs=len(mis_configs),
    )

    if str(args.optimizer_method) == "COBYLA":
        opt_config = OptimizerConfig(method="COBYLA", maxiter=int(args.optimizer_maxiter), invalid_loss=1e6)
    else:
        opt_config = OptimizerConfig(method=str(args.optimizer_method), maxiter=int(args.optimizer_maxiter))

    stages: dict[str, Any] = {}
    if not args.skip_adiabatic:
        stages["adiabatic"] = _run_adiabatic_stage(
            problem,
            args,
            rng=np.random.default_rng(int(args.sample_seed)),
            mis_size=mis_size,
        )
    if not args.skip_qaoa:
        stages["qaoa"] = _run_qaoa_stage(problem, args, opt_config)
    if not args.skip_linear:
        stages["linear"] = _run_linear_stage(problem, args, opt_config)

    payload: dict[str, Any] = {
        "generated_utc": datetime.now(timezone.utc).isoformat(),
        "pipeline": "rydberg_mis",
        "settings": {
            "seed": int(args.seed),
            "nx": int(args.nx),
            "ny": int(args.ny),
            "scale": float(args.scale),
            "dropout": float(args.dropout),
            "radius": float(args.radius),
            "t_max": float(args.t_max),
            "optimizer_method": str(args.optimizer_method),
            "optimizer_maxiter": int(args.optimizer_maxiter),
        },
        "problem": {
            "num_atoms": int(problem.n_sites),
            "points": [list(p) for p in problem.points],
            "edges": [list(e) for e in graph_edges(problem.graph)],
            "subspace_dim": int(problem.subspace.dim),
            "mis_size": int(mis_size),
            "mis_configs_qn_to_q0": [bitstring_qn1_to_q0(problem.n_sites, c) for c in mis_configs],
        },
        "stages": stages,
    }

    output_json.parent.mkdir(parents=True, exist_ok=True)
    output_json.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    if not args.skip_pdf:
        output_pdf.parent.mkdir(parents=True, exist_ok=True)
        num_pages = _write_pipeline_pdf(output_pdf, payload, run_command)
        ai_log("mis_pdf_written", output_pdf=str(output_pdf), pages=num_pages)

    ai_log(
        "mis_main_done",
        output_json=str(output_json),
        output_pdf=(str(output_pdf) if not args.skip_pdf else None),
        stages=sorted(stages),
    )
    print(f"Wrote JSON: {output_json}")
    if not args.skip_pdf:
        print(f"Wrote PDF:  {output_pdf}")


if __name__ == "__main__":
    main()
