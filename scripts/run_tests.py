#!/usr/bin/env python3
"""Test runner script for the coachsync backend.

Usage:
    python3 scripts/run_tests.py                  # every suite, coverage, quality checks
    python3 scripts/run_tests.py oauth sync       # selected suites only
    python3 scripts/run_tests.py --no-quality     # skip black/isort/flake8/mypy
"""

import argparse
import subprocess
import sys
from pathlib import Path

PYTEST = [sys.executable, "-m", "pytest"]

# Suite name -> (description, test modules)
SUITES = {
    "models": (
        "Models, lease and configuration",
        ["tests/test_models.py", "tests/test_config.py", "tests/test_scripts.py"],
    ),
    "oauth": ("OAuth broker and state tokens", ["tests/test_oauth_service.py"]),
    "providers": ("Strava and MyFitnessPal clients", ["tests/test_provider_services.py"]),
    "sync": ("Integration lifecycle and sync state machine", ["tests/test_integration_service.py"]),
    "webhooks": ("Webhook gateway", ["tests/test_webhook_service.py"]),
    "api": ("HTTP endpoints", ["tests/test_api_endpoints.py"]),
}

QUALITY_CHECKS = [
    (["black", "--check", "coachsync/", "tests/", "scripts/"], "Code Formatting Check"),
    (["isort", "--check-only", "coachsync/", "tests/", "scripts/"], "Import Sorting Check"),
    (["flake8", "coachsync/", "tests/"], "Linting Check"),
    (["mypy", "coachsync/"], "Type Checking"),
]


def run_command(command: list[str], description: str) -> bool:
    """Run a command and return success status."""
    print(f"Running: {description}")
    result = subprocess.run(command, capture_output=True, text=True)
    if result.returncode == 0:
        print(f"✅ {description} passed")
        return True
    print(f"❌ {description} failed (exit {result.returncode}):")
    print(f"{result.stdout}{result.stderr}")
    return False


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run coachsync test suites")
    parser.add_argument("suites", nargs="*", metavar="suite", help=f"one of: {', '.join(SUITES)}")
    parser.add_argument("--no-quality", action="store_true", help="skip formatting, lint and type checks")
    parser.add_argument("--no-coverage", action="store_true", help="skip the coverage run")
    args = parser.parse_args()
    unknown = [name for name in args.suites if name not in SUITES]
    if unknown:
        parser.error(f"unknown suite(s): {', '.join(unknown)}")
    return args


def main():
    args = parse_args()

    if not Path("pyproject.toml").exists():
        print("❌ Error: pyproject.toml not found. Run this script from the project root.")
        sys.exit(1)

    selected = args.suites or list(SUITES)
    failed = []

    print("🧪 Running coachsync Tests")
    print("=" * 50)
    for name in selected:
        description, modules = SUITES[name]
        if not run_command(PYTEST + modules + ["-q"], description):
            failed.append(description)

    # Coverage only makes sense over the whole tree
    if not args.suites and not args.no_coverage:
        command = PYTEST + ["tests/", "-q", "--cov=coachsync", "--cov-report=term-missing"]
        if not run_command(command, "Coverage"):
            failed.append("Coverage")

    if not args.no_quality:
        print("\n🔍 Running Code Quality Checks")
        print("-" * 30)
        for command, description in QUALITY_CHECKS:
            if not run_command(command, description):
                failed.append(description)

    print("\n" + "=" * 50)
    if failed:
        print(f"❌ Failed: {', '.join(failed)}")
        sys.exit(1)
    print("🎉 All tests and checks passed!")


if __name__ == "__main__":
    main()
