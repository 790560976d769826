"""Nox sessions for restbucket: tests, coverage, typing and benchmarks."""

import nox

PYTHONS = ["3.10", "3.11", "3.12", "3.13"]

nox.options.sessions = ["tests", "type_check"]
nox.options.default_venv_backend = "uv"


@nox.session(python=PYTHONS)
def tests(session):
    """Run the unit tests."""
    session.install(".[full,dev]")
    session.run("pytest", "tests/", "-q", "--no-cov", *session.posargs)


@nox.session(python="3.12")
def coverage(session):
    """Run the unit tests with a coverage report for the package."""
    session.install(".[full,dev]")
    session.run(
        "pytest",
        "tests/",
        "-q",
        "--cov=restbucket",
        "--cov-report=term-missing",
        *session.posargs,
    )


@nox.session(python=PYTHONS)
def type_check(session):
    """Type check the package with mypy in strict mode."""
    session.install(".[full,dev]")
    session.run("mypy", "src/restbucket", *session.posargs)


@nox.session(python="3.12")
def benchmarks(session):
    """Measure dispatcher overhead and bucket scaling."""
    session.install(".[full,dev]")
    session.run("pytest", "benchmarks/", "-v", "-s", "--no-cov", *session.posargs)
