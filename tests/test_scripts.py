from __future__ import annotations

from pathlib import Path

from scripts.run_tests import SUITES


def test_every_test_module_belongs_to_a_suite():
    tests_dir = Path(__file__).parent
    modules = {f"tests/{path.name}" for path in tests_dir.glob("test_*.py")}
    grouped = {module for _, files in SUITES.values() for module in files}

    assert grouped == modules
