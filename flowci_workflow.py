# flowci_workflow.py
# Workflow for flowci itself: style, lint, a test matrix, and a tag-gated release.
from __future__ import annotations

from flowci import job, matrix, ref_startswith, sh, wf

NAME = "flowci"
ON = ["push", "pull_request"]


def workflow():
    return wf(
        job(
            "codestyle",
            sh("Ruff format check", "ruff format --check ."),
        ),

        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
        ),

        # Test job - one instance per interpreter
        job(
            "test",
            sh("Install package", "python${{ matrix.python }} -m pip install -e '.[test]'"),
            sh("Run pytest", "python${{ matrix.python }} -m pytest -q"),
            needs=["codestyle", "lint"],
            matrix=matrix("python", ["3.10", "3.11", "3.12"]),
        ),

        # Release - only for v0.x tags, and the only job that sees the token
        job(
            "publish",
            sh("Build", "python -m build"),
            sh("Upload", "python -m twine upload -u __token__ -p \"$PYPI_TOKEN\" dist/*"),
            needs=["test"],
            condition=ref_startswith("refs/tags/v0"),
            secrets=["PYPI_TOKEN"],
        ),
    )
