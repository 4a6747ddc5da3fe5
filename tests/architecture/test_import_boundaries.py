"""
Import-boundary enforcement.

1. Kernel independence -- fee_ledger/** may not import fee_services or
                          fee_config.
2. Domain purity       -- fee_ledger/domain/** may not import the ORM,
                          models, services or selectors.
3. No wall clock       -- fee_ledger/** reads time only through
                          fee_ledger.domain.clock.
4. Config centralisation -- outside fee_config itself, only the schema and
                          the package entrypoint may be imported.

All scanning is done via AST -- these tests are read-only.
"""

import ast
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    """Return all .py files under *package*, sorted for deterministic order."""
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _rel(path: Path) -> str:
    return path.relative_to(REPO_ROOT).as_posix()


def _parse(path: Path) -> ast.AST | None:
    try:
        return ast.parse(path.read_text(), filename=str(path))
    except (SyntaxError, UnicodeDecodeError):
        return None


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *path*."""
    tree = _parse(path)
    if tree is None:
        return []

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _extract_attribute_calls(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for two-level attribute references."""
    tree = _parse(path)
    if tree is None:
        return []
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    """True if *module* equals or is a child of any prefix."""
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"  {_rel(path)}:{lineno} imports '{module}'"
        for path in _python_files(package)
        for lineno, module in _extract_imports(path)
        if _matches_any(module, forbidden)
    ]


class TestKernelIndependence:
    def test_kernel_does_not_import_upper_layers(self):
        violations = _violations("fee_ledger", ("fee_services", "fee_config"))
        assert not violations, (
            "fee_ledger/** must not import fee_services or fee_config:\n"
            + "\n".join(violations)
        )

    def test_config_does_not_import_services(self):
        violations = _violations("fee_config", ("fee_services",))
        assert not violations, "\n".join(violations)


class TestDomainPurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "fee_ledger.models",
        "fee_ledger.services",
        "fee_ledger.selectors",
        "fee_ledger.db.engine",
    )

    def test_domain_files_have_no_forbidden_imports(self):
        violations = _violations("fee_ledger/domain", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "fee_ledger/domain/** must stay free of persistence and services:\n"
            + "\n".join(violations)
        )


class TestNoWallClock:
    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
    })
    ALLOWED_FILES = frozenset({"fee_ledger/domain/clock.py"})

    def test_kernel_reads_time_through_clock(self):
        violations = [
            f"  {_rel(path)}:{lineno} calls '{qualname}'"
            for path in _python_files("fee_ledger")
            if _rel(path) not in self.ALLOWED_FILES
            for lineno, qualname in _extract_attribute_calls(path)
            if qualname in self.FORBIDDEN_CALLS
        ]
        assert not violations, (
            "Use an injected Clock instead of the wall clock:\n" + "\n".join(violations)
        )


class TestConfigCentralization:
    ALLOWED = ("fee_config", "fee_config.schema")

    def test_only_entrypoint_and_schema_imported(self):
        violations = []
        for package in ("fee_services", "tests"):
            for path in _python_files(package):
                if _rel(path) == "tests/config/test_config_loader.py":
                    continue
                for lineno, module in _extract_imports(path):
                    if _matches_any(module, ("fee_config",)) and module not in self.ALLOWED:
                        violations.append(f"  {_rel(path)}:{lineno} imports '{module}'")
        assert not violations, (
            "Import configuration through fee_config or fee_config.schema:\n"
            + "\n".join(violations)
        )
