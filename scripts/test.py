#!/usr/bin/env python3
"""Test runner script for Sluice.

Wraps pytest with the marker selection and coverage options used in
development and CI.
"""

import argparse
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parent.parent

AREAS = [
    "all",
    "unit",
    "advisor",
    "cache",
    "catalog",
    "compiler",
    "config",
    "core",
    "database",
    "engine",
    "executor",
    "logging",
    "search",
]


def run_command(cmd: List[str], *, cwd: Optional[Path] = None) -> int:
    """Run command and return exit code."""
    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=cwd or ROOT)
    return result.returncode


def build_command(
    area: str = "all",
    *,
    coverage: bool = False,
    verbose: bool = False,
    fail_fast: bool = False,
    html_report: bool = False,
    keyword: Optional[str] = None,
) -> List[str]:
    """Build the pytest command line.

    Args:
        area: Marker to select, or ``all``
        coverage: Enable coverage reporting
        verbose: Enable verbose output
        fail_fast: Stop on first failure
        html_report: Also write an HTML coverage report
        keyword: pytest ``-k`` expression
    """
    cmd = [sys.executable, "-m", "pytest"]

    if area != "all":
        cmd.extend(["-m", area])

    if keyword:
        cmd.extend(["-k", keyword])

    if coverage:
        cmd.extend([
            "--cov=sluice",
            "--cov-report=term-missing:skip-covered",
            "--cov-report=xml:coverage.xml",
        ])
        if html_report:
            cmd.append("--cov-report=html:htmlcov")

    if verbose:
        cmd.append("-v")

    if fail_fast:
        cmd.append("-x")

    cmd.append("--durations=10")
    return cmd


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Sluice test runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Run all tests
  %(prog)s --area cache             # Run cache tests only
  %(prog)s --coverage --html        # Run with coverage and HTML report
  %(prog)s -k pagination -v         # Run tests matching a keyword
        """,
    )
    parser.add_argument("--area", "-a", choices=AREAS, default="all", help="Test area to run (default: all)")
    parser.add_argument("--coverage", "-c", action="store_true", help="Enable coverage reporting")
    parser.add_argument("--html", action="store_true", help="Generate HTML coverage report")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--fail-fast", "-x", action="store_true", help="Stop on first failure")
    parser.add_argument("-k", dest="keyword", help="Only run tests matching the expression")

    args = parser.parse_args()
    return run_command(
        build_command(
            args.area,
            coverage=args.coverage,
            verbose=args.verbose,
            fail_fast=args.fail_fast,
            html_report=args.html,
            keyword=args.keyword,
        )
    )


if __name__ == "__main__":
    sys.exit(main())
