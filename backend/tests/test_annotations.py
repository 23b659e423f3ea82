"""
Annotations use built-in generics (``dict[str, Any]``, ``list[str]``)
across the package.
"""

import ast
from pathlib import Path

import pytest

import content_ingestion

PACKAGE_ROOT = Path(content_ingestion.__file__).parent
TYPING_ALIASES = {"Dict", "List", "Tuple", "Set", "FrozenSet", "Type"}


def typing_aliases_imported(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    return {
        alias.name
        for node in ast.walk(tree)
        if isinstance(node, ast.ImportFrom) and node.module == "typing"
        for alias in node.names
        if alias.name in TYPING_ALIASES
    }


@pytest.mark.parametrize(
    "path",
    sorted(PACKAGE_ROOT.rglob("*.py")),
    ids=lambda path: str(path.relative_to(PACKAGE_ROOT)),
)
def test_no_typing_collection_aliases(path):
    assert typing_aliases_imported(path) == set()
