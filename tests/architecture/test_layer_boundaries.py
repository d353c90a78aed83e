"""
Kernel layer boundaries.

Tests that enforce the import direction between packages:

1. replenishment_kernel/** may NOT import replenishment_config.  Config sits
   above the kernel and reaches it only through ``bridges``.

2. replenishment_kernel/domain/** is pure: no sqlalchemy, no models, no
   services, no selectors, no db/.

3. models/ and db/ never import services/ or selectors/; services/ never
   import selectors/.

These tests read source code via AST -- they cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """(line_number, module) for every import in ``path``."""
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
    found: list[str] = []
    for path in _python_files(package):
        for lineno, module in _extract_imports(path):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestKernelNoUpwardDependencies:

    def test_kernel_does_not_import_config(self):
        violations = _violations("replenishment_kernel", ("replenishment_config",))

        assert not violations, (
            "Kernel boundary violation -- replenishment_kernel/** must not "
            "import replenishment_config:\n" + "\n".join(violations)
        )


class TestDomainPurity:

    FORBIDDEN = (
        "sqlalchemy",
        "replenishment_kernel.db",
        "replenishment_kernel.models",
        "replenishment_kernel.services",
        "replenishment_kernel.selectors",
    )

    def test_domain_has_no_infrastructure_imports(self):
        violations = _violations("replenishment_kernel/domain", self.FORBIDDEN)

        assert not violations, (
            "Domain purity violation -- replenishment_kernel/domain/** must "
            "not depend on persistence or services:\n" + "\n".join(violations)
        )


class TestLayerDirection:

    def test_models_and_db_do_not_import_services(self):
        forbidden = ("replenishment_kernel.services", "replenishment_kernel.selectors")
        violations = _violations("replenishment_kernel/models", forbidden)
        violations += _violations("replenishment_kernel/db", forbidden)

        assert not violations, "\n".join(violations)

    def test_services_do_not_import_selectors(self):
        violations = _violations(
            "replenishment_kernel/services", ("replenishment_kernel.selectors",)
        )

        assert not violations, "\n".join(violations)
