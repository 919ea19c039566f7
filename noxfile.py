import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13", "3.14"]

# Packages with C extensions that must be rebuilt per Python version.
# A cached wheel can carry a .so compiled for the wrong interpreter.
_C_EXT_PACKAGES = ["psycopg2"]


def _install(session: nox.Session, *extras: str) -> None:
    """Install the project with the test extra into the nox virtualenv."""
    session.install("-e", f".[{','.join(('test', *extras))}]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run full test suite across Python versions."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def tests_domain(session: nox.Session) -> None:
    """Run domain-layer tests only (no carrier, no HTTP)."""
    _install(session)
    session.run("pytest", "tests/tracking/domain/")


@nox.session(python=PYTHON_VERSIONS[-1])
def tests_postgresql(session: nox.Session) -> None:
    """Run the suite against PostgreSQL (PROTEAN_ENV=postgresql)."""
    _install(session, "postgresql")
    # Force-rebuild C-extension packages so the .so matches this Python version.
    session.run("pip", "install", "--force-reinstall", "--no-cache-dir", *_C_EXT_PACKAGES)
    session.run("pytest", "--env", "postgresql", *session.posargs)


@nox.session(python=PYTHON_VERSIONS[-1])
def loadtest(session: nox.Session) -> None:
    """Headless Locust run against a tracking API already listening on --host."""
    session.install("-e", ".[loadtest]")
    session.run(
        "locust",
        "-f",
        "loadtests/locustfile.py",
        "--headless",
        "-u",
        "20",
        "-r",
        "5",
        "-t",
        "60s",
        *(session.posargs or ["--host", "http://localhost:8000"]),
    )
