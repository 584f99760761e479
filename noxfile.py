import nox

PYTHON_VERSIONS = ["3.10", "3.11", "3.12"]
STYLE_TARGETS = ("src", "tests", "noxfile.py")

nox.options.reuse_existing_virtualenvs = True
nox.options.error_on_missing_interpreters = False
nox.options.sessions = ("lint", "tests")


def install_with_dev(session: nox.Session) -> None:
    session.install("-e", ".[dev]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Unit tests, plus the Redis queue tests when REDIS_URL points at a live server."""
    install_with_dev(session)
    session.run("pytest", "-q", "--disable-warnings", "--maxfail=1", *session.posargs)


@nox.session(python=PYTHON_VERSIONS, name="tests-unit")
def tests_unit(session: nox.Session) -> None:
    install_with_dev(session)
    session.run("pytest", "-q", "-m", "unit and not slow", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def typecheck(session: nox.Session) -> None:
    install_with_dev(session)
    session.run("mypy", "src/core", "src/batch")


@nox.session(name="lint", python=False)
def lint(session: nox.Session) -> None:
    """Black in check mode, then Ruff without fixes."""
    session.run("hatch", "run", "black", "--check", *STYLE_TARGETS, external=True)
    session.run("hatch", "run", "ruff", "check", *STYLE_TARGETS, external=True)


@nox.session(name="fmt", python=False)
def fmt(session: nox.Session) -> None:
    session.run("hatch", "run", "black", *STYLE_TARGETS, external=True)
    session.run("hatch", "run", "ruff", "check", "--select", "I", "--fix", *STYLE_TARGETS, external=True)


@nox.session(python=PYTHON_VERSIONS)
def ci(session: nox.Session) -> None:
    """Format check, lint, typecheck and tests in one go."""
    install_with_dev(session)
    session.run("black", "--check", *STYLE_TARGETS)
    session.run("ruff", "check", *STYLE_TARGETS)
    session.run("mypy", "src/core", "src/batch")
    session.run("pytest", "-q", "--disable-warnings", "--maxfail=1")
