"""Report generation for FragMapLab runs."""
from __future__ import annotations

import json
import os
from typing import Dict, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from fragmap.models import PipelineConfig
from fragmap.pipeline import FragMapResult, PipelineResult
from fragmap.region import describe_anchors
from fragmap.serialization import to_jsonable

_MAX_LISTED_ANCHORS = 20


def generate_report(result: PipelineResult, config: PipelineConfig, command_line: str | None = None) -> str:
    output_dir = config.outputs.output_dir
    report_dir = os.path.join(output_dir, "report")
    os.makedirs(report_dir, exist_ok=True)

    lines: List[str] = []
    lines.append("# FragMapLab Report")
    lines.append("")
    lines.append("## Reproducibility")
    lines.append(f"- Command line: {command_line or 'N/A'}")
    lines.append("- Config file: metadata.json")
    lines.append(f"- Output directory: {output_dir}")
    lines.append(f"- Center convention: {config.parse.center_convention}")
    lines.append(f"- DX axis order: {config.parse.dx_axis_order}")
    lines.append("")
    lines.append("### Package Versions")
    for name, version in _package_versions().items():
        lines.append(f"- {name}: {version}")
    lines.append("")
    lines.append("### Config Snapshot")
    lines.append("```")
    lines.append(json.dumps(to_jsonable(config.to_dict()), indent=2))
    lines.append("```")
    lines.append("")

    if result.anchors:
        labels = describe_anchors(result.anchors)
        lines.append("## Reference Anchors")
        lines.append(f"- Count: {len(labels)}")
        shown = ", ".join(labels[:_MAX_LISTED_ANCHORS])
        if len(labels) > _MAX_LISTED_ANCHORS:
            shown += ", ..."
        lines.append(f"- Anchors: {shown}")
        lines.append("")

    if result.warnings:
        lines.append("## Preflight Warnings")
        for warning in result.warnings:
            lines.append(f"- {warning}")
        lines.append("")

    if result.failures:
        lines.append("## Failed FragMaps")
        for fragmap_id, message in result.failures.items():
            lines.append(f"- {fragmap_id}: {message}")
        lines.append("")

    for fragmap_id, fragmap_result in result.fragmap_results.items():
        stats = fragmap_result.statistics
        lines.append(f"## FragMap: {fragmap_result.spec.name} ({fragmap_id})")
        lines.append("")
        lines.append(f"- File: {fragmap_result.spec.path}")
        lines.append(f"- Dimensions: {fragmap_result.grid.dimensions}")
        lines.append(f"- Spacing: {fragmap_result.grid.spacing}")
        lines.append(f"- Origin: {tuple(round(v, 4) for v in fragmap_result.grid.origin)}")
        lines.append(
            f"- Values: min {stats.min:.3f}, max {stats.max:.3f}, mean {stats.mean:.3f}, std {stats.std_dev:.3f}"
        )
        lines.append(f"- Threshold: {fragmap_result.threshold} ({fragmap_result.direction})")
        lines.append(f"- Recommended iso value: {fragmap_result.recommended_iso_value:.3f}")
        lines.append(f"- Quality score: {fragmap_result.quality_score}/10")
        lines.append(f"- Sampled points: {len(fragmap_result.points)}")
        if fragmap_result.filtered is not None:
            lines.append(f"- Region-filtered points: {len(fragmap_result.filtered)}")
        lines.append("")
        if fragmap_result.warnings:
            lines.append("### Warnings")
            for warning in fragmap_result.warnings:
                lines.append(f"- {warning.kind}: {warning.message}")
            lines.append("")

        fig_path = _plot_value_histogram(fragmap_result, report_dir, fragmap_id)
        lines.append(f"![{fragmap_id}]({os.path.basename(fig_path)})")
        lines.append("")

    report_md = "\n".join(lines)
    report_path = os.path.join(report_dir, "report.md")
    with open(report_path, "w", encoding="utf-8") as handle:
        handle.write(report_md)

    if config.outputs.report_format.lower() == "html":
        _write_html_report(lines, report_dir)

    return report_path


def _package_versions() -> Dict[str, str]:
    versions = {}
    modules = {
        "MDAnalysis": "MDAnalysis",
        "numpy": "numpy",
        "pandas": "pandas",
        "matplotlib": "matplotlib",
    }
    for name, module_name in modules.items():
        try:
            module = __import__(module_name)
            versions[name] = getattr(module, "__version__", "unknown")
        except ImportError:
            versions[name] = "not available"
    return versions


def _write_html_report(lines: List[str], report_dir: str) -> None:
    html_lines = ["<html><body>"]
    in_code_block = False
    for line in lines:
        if line.startswith("```"):
            in_code_block = not in_code_block
            html_lines.append("<pre>" if in_code_block else "</pre>")
            continue
        escaped = line.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        if in_code_block:
            html_lines.append(escaped)
        elif line.startswith("# "):
            html_lines.append(f"<h1>{escaped[2:]}</h1>")
        elif line.startswith("## "):
            html_lines.append(f"<h2>{escaped[3:]}</h2>")
        elif line.startswith("### "):
            html_lines.append(f"<h3>{escaped[4:]}</h3>")
        elif line.startswith("![") and "](" in line:
            path = line.split("](")[1].rstrip(")")
            html_lines.append(f"<img src=\"{path}\" style=\"max-width:100%;\"/>")
        elif line.startswith("- "):
            html_lines.append(f"<li>{escaped[2:]}</li>")
        elif not line:
            html_lines.append("<br/>")
        else:
            html_lines.append(f"<p>{escaped}</p>")
    html_lines.append("</body></html>")

    html_path = os.path.join(report_dir, "report.html")
    with open(html_path, "w", encoding="utf-8") as handle:
        handle.write("\n".join(html_lines))


def _plot_value_histogram(fragmap_result: FragMapResult, report_dir: str, fragmap_id: str) -> str:
    values = np.asarray(fragmap_result.grid.values, dtype=float)
    fig, ax = plt.subplots(figsize=(5, 3))
    ax.hist(values, bins=60, color=fragmap_result.spec.color or "#2b6cb0", edgecolor="#333333", alpha=0.8)
    ax.axvline(fragmap_result.threshold, color="#c53030", linestyle="--", label="threshold")
    ax.axvline(
        fragmap_result.recommended_iso_value,
        color="#2f855a",
        linestyle=":",
        label="recommended",
    )
    ax.set_xlabel("GFE (kcal/mol)")
    ax.set_ylabel("Grid points")
    ax.set_yscale("log")
    ax.set_title(f"{fragmap_result.spec.name}: value distribution")
    ax.legend(loc="upper right", fontsize=7)
    fig.tight_layout()
    path = os.path.join(report_dir, f"{fragmap_id}_hist.png")
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path
