"""Command line interface for FragMapLab."""
from __future__ import annotations

import argparse
import json
import sys

from fragmap.errors import FatalGridError, GridParseError
from fragmap.export import export_results, write_opendx, write_points_csv
from fragmap.logging_utils import setup_run_logger
from fragmap.models import DIRECTION_FAVORABLE, ParseOptions
from fragmap.pipeline import FragMapPipeline, load_pipeline_config
from fragmap.preflight import run_preflight
from fragmap.report import generate_report
from fragmap.sampler import sample_grid
from fragmap.serialization import to_jsonable
from fragmap.stats import quality_score, recommended_iso_value
from fragmap.validation import load_grid


def _progress(current: int, total: int, message: str) -> None:
    percent = int(100 * current / max(total, 1))
    sys.stdout.write(f"\r[{percent:3d}%] {message}")
    sys.stdout.flush()
    if current >= total:
        sys.stdout.write("\n")


def _parse_options(args: argparse.Namespace) -> ParseOptions:
    return ParseOptions(
        center_convention=args.center_convention,
        dx_axis_order=args.dx_axis_order,
    )


def run_command(args: argparse.Namespace) -> int:
    config = load_pipeline_config(args.config)
    if args.output:
        config.outputs.output_dir = args.output
    if args.stride is not None:
        config.sampling.stride = args.stride
    if args.max_points is not None:
        config.sampling.max_points = None if args.max_points <= 0 else args.max_points
    if args.workers is not None:
        config.sampling.workers = None if args.workers <= 0 else args.workers
    if args.report:
        config.outputs.report = True

    logger, log_path = setup_run_logger(config.outputs.output_dir)
    logger.info("CLI pipeline run requested")
    pipeline = FragMapPipeline(config)
    result = pipeline.run(progress=_progress if args.progress else None, logger=logger)

    export_results(result, config)
    for fragmap_id, fragmap_result in result.fragmap_results.items():
        filtered = (
            f", {len(fragmap_result.filtered)} in region" if fragmap_result.filtered is not None else ""
        )
        print(f"{fragmap_id}: {len(fragmap_result.points)} points{filtered}")
    if result.warnings:
        print("Preflight warnings:")
        for warning in result.warnings:
            print(f"  - {warning}")
    if result.failures:
        print("Failed FragMaps:")
        for fragmap_id, message in result.failures.items():
            print(f"  - {fragmap_id}: {message}")
    print(f"Log written to {log_path}")

    if config.outputs.report:
        report_path = generate_report(result, config, command_line=" ".join(sys.argv))
        print(f"Report written to {report_path}")
    return 1 if result.failures else 0


def inspect_command(args: argparse.Namespace) -> int:
    report = load_grid(args.file, fmt=args.format, options=_parse_options(args))
    grid = report.grid
    stats = report.statistics
    print(f"File: {args.file}")
    print(f"Format: {grid.source_format}")
    print(f"Dimensions: {grid.dimensions[0]} x {grid.dimensions[1]} x {grid.dimensions[2]}")
    print(f"Spacing: {grid.spacing}")
    print(f"Origin: {grid.origin}")
    if grid.center is not None:
        print(f"Center: {grid.center}")
    print(
        f"Values: min={stats.min:.4f} max={stats.max:.4f} mean={stats.mean:.4f} std={stats.std_dev:.4f}"
    )
    print(f"Recommended iso value: {recommended_iso_value(stats):.3f}")
    print(f"Quality score: {quality_score(stats)}/10")
    if grid.metadata:
        print("Metadata:")
        for key, value in grid.metadata.items():
            print(f"  {key}: {value}")
    if report.warnings:
        print("Warnings:")
        for warning in report.warnings:
            print(f"  - {warning.kind}: {warning.message}")
    if args.json:
        print(json.dumps(to_jsonable({"grid": grid.describe(), "statistics": stats.to_dict()}), indent=2))
    return 0


def sample_command(args: argparse.Namespace) -> int:
    report = load_grid(args.file, fmt=args.format, options=_parse_options(args))
    points = sample_grid(
        report.grid,
        args.threshold,
        direction=args.direction,
        stride=args.stride,
        max_points=args.max_points,
        workers=args.workers,
    )
    print(f"{len(points)} points pass {args.direction} threshold {args.threshold}")
    if args.out:
        write_points_csv(points, args.out)
        print(f"Points written to {args.out}")
    return 0


def convert_command(args: argparse.Namespace) -> int:
    report = load_grid(args.file, fmt=args.format, options=_parse_options(args))
    path = write_opendx(report.grid, args.out, axis_order=args.out_axis_order)
    print(f"OpenDX written to {path}")
    return 0


def preflight_command(args: argparse.Namespace) -> int:
    config = load_pipeline_config(args.config)
    report = run_preflight(config)
    for check in report.file_checks.values():
        status = "ok" if not check.problems else "; ".join(check.problems)
        print(f"{check.fragmap_id}: {check.path} [{check.format or '?'}] {status}")
    for warning in report.warnings:
        print(f"WARNING: {warning}")
    for error in report.errors:
        print(f"ERROR: {error}")
    print("Preflight OK" if report.ok else "Preflight FAILED")
    return 0 if report.ok else 1


def _add_grid_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("file", help="FragMap grid file (.map or .dx)")
    parser.add_argument("--format", choices=["native", "opendx"], help="Override format detection")
    parser.add_argument(
        "--center-convention",
        choices=["half_open", "centered"],
        default="half_open",
        help="How a native CENTER maps to the grid origin",
    )
    parser.add_argument(
        "--dx-axis-order",
        choices=["x_fastest", "z_fastest"],
        default="x_fastest",
        help="Value ordering of OpenDX data sections",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FragMapLab CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the FragMap pipeline")
    run_parser.add_argument("--config", required=True, help="Pipeline JSON/YAML file")
    run_parser.add_argument("--output", help="Output directory")
    run_parser.add_argument("--stride", type=int, help="Grid sampling stride")
    run_parser.add_argument("--max-points", type=int, help="Maximum sampled points per map (0 = unbounded)")
    run_parser.add_argument(
        "--workers",
        type=int,
        help="Sampling worker count (0 for auto)",
    )
    run_parser.add_argument("--progress", action="store_true", help="Show progress bar")
    run_parser.add_argument("--report", action="store_true", help="Generate report")
    run_parser.set_defaults(func=run_command)

    inspect_parser = subparsers.add_parser("inspect", help="Print grid header, statistics and warnings")
    _add_grid_arguments(inspect_parser)
    inspect_parser.add_argument("--json", action="store_true", help="Also print a JSON summary")
    inspect_parser.set_defaults(func=inspect_command)

    sample_parser = subparsers.add_parser("sample", help="Sample grid points passing a threshold")
    _add_grid_arguments(sample_parser)
    sample_parser.add_argument("--threshold", type=float, required=True, help="Iso value")
    sample_parser.add_argument(
        "--direction",
        choices=["favorable", "exclusion"],
        default=DIRECTION_FAVORABLE,
        help="favorable keeps value <= threshold, exclusion keeps value >= threshold",
    )
    sample_parser.add_argument("--stride", type=int, default=1, help="Per-axis sampling stride")
    sample_parser.add_argument("--max-points", type=int, help="Keep at most N most favorable points")
    sample_parser.add_argument("--workers", type=int, default=1, help="Sampling worker count")
    sample_parser.add_argument("--out", help="CSV output path")
    sample_parser.set_defaults(func=sample_command)

    convert_parser = subparsers.add_parser("convert", help="Convert a grid to OpenDX")
    _add_grid_arguments(convert_parser)
    convert_parser.add_argument("--out", required=True, help="Output .dx path")
    convert_parser.add_argument(
        "--out-axis-order",
        choices=["x_fastest", "z_fastest"],
        default="x_fastest",
        help="Value ordering of the written OpenDX data section",
    )
    convert_parser.set_defaults(func=convert_command)

    preflight_parser = subparsers.add_parser("preflight", help="Check a pipeline config")
    preflight_parser.add_argument("--config", required=True, help="Pipeline JSON/YAML file")
    preflight_parser.set_defaults(func=preflight_command)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (GridParseError, FatalGridError) as exc:
        invariant = getattr(exc, "invariant", "format")
        sys.stderr.write(f"error [{invariant}]: {exc}\n")
        return 2


if __name__ == "__main__":
    sys.exit(main())
