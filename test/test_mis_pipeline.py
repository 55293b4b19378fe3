#!/usr/bin/env python3
"""Smoke tests for the MIS pipeline CLI on a tiny lattice."""

from __future__ import annotations

import importlib.util
import json
import re
import sys
from pathlib import Path

import numpy as np
import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

_spec = importlib.util.spec_from_file_location(
    "mis_pipeline",
    str(REPO_ROOT / "pipelines" / "mis_pipeline.py"),
)
_pipeline = importlib.util.module_from_spec(_spec)
sys.modules["mis_pipeline"] = _pipeline
_spec.loader.exec_module(_pipeline)

from src.rydberg.protocols import MISProblem
from src.rydberg.register import product_state
from src.rydberg.waveforms import piecewise_linear

from conftest import PATH4_POINTS, PATH4_RADIUS


def test_parse_float_list_accepts_csv_and_json() -> None:
    assert _pipeline._parse_float_list("0.1, 0.8,0.8") == [0.1, 0.8, 0.8]
    assert _pipeline._parse_float_list("[1, 2]") == [1.0, 2.0]


def test_waveform_curve_units() -> None:
    curve = _pipeline._waveform_curve(piecewise_linear([0.0, 1.0], [0.0, 2.0 * np.pi]), num=3)
    assert curve["time"] == [0.0, 0.5, 1.0]
    assert np.allclose(curve["value_over_2pi_mhz"], [0.0, 0.5, 1.0])


def test_register_summary_flags_violations() -> None:
    problem = MISProblem.from_points(PATH4_POINTS, PATH4_RADIUS)
    reg = product_state(4, 0b0011)
    summary = _pipeline._register_summary(reg, problem, nlargest=1)
    row = summary["most_probable"][0]
    assert row["bitstring_qn_to_q0"] == "0011"
    assert row["is_independent_set"] is False
    assert row["num_violations"] == 1
    assert row["postprocessed_size"] == 2
    assert summary["independent_set_probabilities"][1] == pytest.approx(1.0)


def test_main_writes_json(tmp_path, monkeypatch) -> None:
    out = tmp_path / "mis.json"
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "mis_pipeline.py",
            "--nx", "2",
            "--ny", "2",
            "--dropout", "0.0",
            "--num-samples", "50",
            "--nlargest", "4",
            "--qaoa-layers", "1",
            "--optimizer-maxiter", "2",
            "--output-json", str(out),
            "--skip-pdf",
        ],
    )
    _pipeline.main()
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["problem"]["num_atoms"] == 4
    assert payload["problem"]["mis_size"] == 1
    assert set(payload["stages"]) == {"adiabatic", "qaoa", "linear"}
    for key in ("qaoa", "linear"):
        opt = payload["stages"][key]["optimizer"]
        assert opt["loss_best"] <= opt["initial_loss"]
    assert payload["stages"]["adiabatic"]["samples"]["num_samples"] == 50


def test_main_writes_pdf_report(tmp_path, monkeypatch) -> None:
    out_json = tmp_path / "mis.json"
    out_pdf = tmp_path / "mis.pdf"
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "mis_pipeline.py",
            "--nx", "2",
            "--ny", "2",
            "--dropout", "0.0",
            "--num-samples", "20",
            "--nlargest", "4",
            "--qaoa-layers", "1",
            "--optimizer-maxiter", "2",
            "--output-json", str(out_json),
            "--output-pdf", str(out_pdf),
        ],
    )
    _pipeline.main()
    data = out_pdf.read_bytes()
    assert data.startswith(b"%PDF")
    # Manifest, graph, then one page per stage.
    assert len(re.findall(rb"/Type\s*/Page\b", data)) == 5

    payload = json.loads(out_json.read_text(encoding="utf-8"))
    del payload["stages"]["qaoa"]
    assert _pipeline._write_pipeline_pdf(tmp_path / "partial.pdf", payload, "") == 4


def test_manifest_lists_problem_and_stage_losses() -> None:
    payload = {
        "settings": {"seed": 42, "radius": 7.5},
        "problem": {
            "num_atoms": 4,
            "edges": [[0, 1], [1, 2], [2, 3]],
            "subspace_dim": 8,
            "mis_size": 2,
            "mis_configs_qn_to_q0": ["0101", "1001", "1010"],
        },
        "stages": {
            "adiabatic": {"rydberg_density_sum": 1.75},
            "qaoa": {"optimizer": {"initial_loss": -1.0, "loss_best": -1.5, "method": "Nelder-Mead", "nfev": 9}},
        },
    }
    text = "\n".join(_pipeline.manifest_lines(payload, "python run.py"))
    assert "0101, 1001, 1010" in text
    assert "<sum n> = 1.7500" in text
    assert "loss -1.0000 -> -1.5000 (Nelder-Mead, nfev=9)" in text
    assert text.endswith("python run.py")
