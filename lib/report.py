"""Report generator — reads result JSONs and produces Markdown / LaTeX tables."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent

# Columns shown first, in this order, when a result carries them.
SUMMARY_COLUMNS = [
    "passed",
    "expected_row_count",
    "actual_row_count",
    "committed_plans",
    "rolled_back_plans",
    "failed_total",
    "duplicate_group_count",
    "missing_key_count",
    "unexpected_key_count",
    "elapsed_s",
    "throughput_tx_s",
]


def register_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format", choices=["markdown", "latex"], default="markdown",
        help="Output format (default: markdown)",
    )
    parser.add_argument(
        "--bench", nargs="*", default=None,
        help="Filter to specific benchmark categories",
    )
    parser.add_argument(
        "--results-dir", type=str, default=str(ROOT / "results"),
        help="Directory containing result JSON files (default: results/)",
    )
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write output to file instead of stdout",
    )
    parser.add_argument(
        "--all-columns", action="store_true",
        help="Include every recorded metric, not only the summary columns",
    )


def run_report(args: argparse.Namespace) -> None:
    results_dir = Path(args.results_dir)
    if not results_dir.exists():
        print(f"No results directory found at {results_dir}")
        return

    reports = _load_reports(results_dir)
    if args.bench:
        reports = [r for r in reports if _report_category(r) in args.bench]

    if not reports:
        print("No result files found.")
        return

    all_columns = getattr(args, "all_columns", False)
    if args.format == "latex":
        output = _generate_latex(reports, all_columns)
    else:
        output = _generate_markdown(reports, all_columns)

    if args.output:
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(output)
        print(f"Report written to {args.output}")
    else:
        print(output)


# -------------------------------------------------------------------
# Internals
# -------------------------------------------------------------------

def _load_reports(results_dir: Path) -> list[dict]:
    reports = []
    for path in sorted(results_dir.glob("*.json")):
        try:
            with open(path) as f:
                data = json.load(f)
            # Basic validation: must be a dict with recognized structure
            if isinstance(data, dict) and isinstance(data.get("results"), list):
                reports.append(data)
        except (json.JSONDecodeError, OSError):
            continue
    return reports


def _report_category(report: dict) -> str:
    """Extract the benchmark category from a report."""
    results = report.get("results", [])
    if results:
        return results[0].get("category", "unknown")
    return "unknown"


def _format_metric(value: object) -> str:
    """Format a single metric value for display."""
    if value is None or value == "":
        return ""
    if isinstance(value, bool):
        return "PASS" if value else "FAIL"
    if isinstance(value, float):
        # Use fewer decimals for large numbers, more for small
        if abs(value) >= 1000:
            return f"{value:,.1f}"
        if abs(value) >= 1:
            return f"{value:.3f}"
        return f"{value:.4f}"
    if isinstance(value, int):
        return f"{value:,}"
    return str(value)


def _collect_columns(results: list[dict], all_columns: bool = False) -> list[str]:
    """Collect metric columns from ALL results, summary columns first."""
    present: set[str] = set()
    for res in results:
        present.update(res.get("metrics", {}).keys())
    cols = [c for c in SUMMARY_COLUMNS if c in present]
    if all_columns:
        cols.extend(sorted(present - set(cols)))
    return cols


def _group_by_category(reports: list[dict]) -> dict[str, list[dict]]:
    by_category: dict[str, list[dict]] = {}
    for r in reports:
        by_category.setdefault(_report_category(r), []).append(r)
    return by_category


def _generate_markdown(reports: list[dict], all_columns: bool = False) -> str:
    lines = ["# Transaction Stress Results\n"]

    for category, cat_reports in sorted(_group_by_category(reports).items()):
        lines.append(f"## {category.upper()}\n")
        for report in cat_reports:
            results = report.get("results", [])
            meta = report.get("metadata", {})
            ts = meta.get("timestamp", "unknown")
            driver = meta.get("driver_version", "?")
            lines.append(f"*Run: {ts} | Driver: {driver}*\n")

            cols = _collect_columns(results, all_columns)
            if not cols:
                continue

            header = "| Benchmark | " + " | ".join(cols) + " |"
            sep = "|---|" + "|".join("---:" for _ in cols) + "|"
            lines.append(header)
            lines.append(sep)
            for res in results:
                name = res.get("benchmark", "?")
                m = res.get("metrics", {})
                vals = " | ".join(_format_metric(m.get(c, "")) for c in cols)
                lines.append(f"| {name} | {vals} |")
            lines.append("")
    return "\n".join(lines)


def _escape_latex(s: str) -> str:
    """Escape LaTeX special characters."""
    for char in ("\\", "&", "%", "$", "#", "_", "{", "}", "~", "^"):
        s = s.replace(char, f"\\{char}")
    return s


def _generate_latex(reports: list[dict], all_columns: bool = False) -> str:
    lines = []

    for category, cat_reports in sorted(_group_by_category(reports).items()):
        lines.append(f"% ---- {category.upper()} ----")

        for report in cat_reports:
            results = report.get("results", [])
            cols = _collect_columns(results, all_columns)
            if not cols:
                continue

            col_spec = "l" + "c" * len(cols)
            lines.append(r"\begin{table}[t]")
            lines.append(r"\centering")
            lines.append(f"\\caption{{{_escape_latex(category.upper())} Results}}")
            lines.append(f"\\begin{{tabular}}{{{col_spec}}}")
            lines.append(r"\toprule")
            header = "Benchmark & " + " & ".join(_escape_latex(c) for c in cols) + r" \\"
            lines.append(header)
            lines.append(r"\midrule")
            for res in results:
                name = _escape_latex(res.get("benchmark", "?"))
                m = res.get("metrics", {})
                vals = " & ".join(_escape_latex(_format_metric(m.get(c, ""))) for c in cols)
                lines.append(f"{name} & {vals} \\\\")
            lines.append(r"\bottomrule")
            lines.append(r"\end{tabular}")
            lines.append(r"\end{table}")
            lines.append("")

    return "\n".join(lines)
