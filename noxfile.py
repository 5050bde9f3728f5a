import nox

PYTHON_VERSIONS = ["3.11", "3.12", "3.13", "3.14"]


def _install(session: nox.Session) -> None:
    """Install the project with its test extra into the nox virtualenv."""
    session.install("-e", ".[test]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run full test suite across Python versions."""
    _install(session)
    session.run("pytest", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def tests_domain(session: nox.Session) -> None:
    """Run domain-layer tests only (no HTTP, no threads)."""
    _install(session)
    session.run("pytest", "tests/domain/")


@nox.session(python=PYTHON_VERSIONS[-1])
def tests_scenarios(session: nox.Session) -> None:
    """Run the BDD scenarios and API tests against the latest Python."""
    _install(session)
    session.run("pytest", "tests/bdd/", "tests/integration/")
