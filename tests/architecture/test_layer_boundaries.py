"""
Layer boundaries, checked by reading source with ast.

1. inventory_kernel/** may NOT import inventory_config or inventory_services.
2. inventory_config/** may NOT import inventory_services.
3. inventory_kernel/domain/** is pure: no SQLAlchemy, no db, models or
   services imports.
4. SQLAlchemy is imported only under inventory_kernel/db and
   inventory_kernel/models.
5. The invariant declaration is complete.
"""

import ast
from pathlib import Path

from inventory_kernel.invariants import ALL_LEDGER_INVARIANTS, LedgerInvariant

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            if any(module == p or module.startswith(f"{p}.") for p in forbidden):
                found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestNoUpwardImports:

    def test_kernel_does_not_import_config_or_services(self):
        violations = _violations("inventory_kernel", ("inventory_config", "inventory_services"))
        assert not violations, "inventory_kernel imports upward:\n" + "\n".join(violations)

    def test_config_does_not_import_services(self):
        violations = _violations("inventory_config", ("inventory_services",))
        assert not violations, "inventory_config imports services:\n" + "\n".join(violations)


class TestPureDomain:

    def test_domain_has_no_persistence_or_service_imports(self):
        violations = _violations(
            "inventory_kernel/domain",
            (
                "sqlalchemy",
                "inventory_kernel.db",
                "inventory_kernel.models",
                "inventory_kernel.services",
                "inventory_kernel.selectors",
            ),
        )
        assert not violations, "domain layer is not pure:\n" + "\n".join(violations)


class TestSqlAlchemyContainment:

    ALLOWED = ("inventory_kernel/db", "inventory_kernel/models")

    def test_sqlalchemy_only_in_db_and_models(self):
        violations = []
        for package in ("inventory_kernel", "inventory_config", "inventory_services"):
            for path in _python_files(package):
                relative = path.relative_to(ROOT).as_posix()
                if relative.startswith(self.ALLOWED):
                    continue
                for lineno, module in _extract_imports(path):
                    if module == "sqlalchemy" or module.startswith("sqlalchemy."):
                        violations.append(f"  {relative}:{lineno} imports '{module}'")
        assert not violations, "SQLAlchemy outside db/models:\n" + "\n".join(violations)


class TestInvariantDeclaration:

    def test_all_invariants_declared(self):
        assert ALL_LEDGER_INVARIANTS == frozenset(LedgerInvariant)
        assert {i.value for i in LedgerInvariant} == {
            "non_negative_stock",
            "atomic_transfer",
            "append_only_log",
            "replay_equivalence",
            "sequence_monotonicity",
            "idempotency",
            "terminal_transfer",
        }
