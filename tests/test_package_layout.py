from pathlib import Path

import collabhub
from collabhub import registry, runtime, schemas, utils

REPO_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_DIR = REPO_ROOT / "src" / "collabhub"


def test_src_holds_only_the_collabhub_package():
    entries = {
        p.name for p in (REPO_ROOT / "src").iterdir()
        if p.name != "__pycache__" and not p.name.endswith(".egg-info")
    }
    assert entries == {"collabhub"}
    assert list(REPO_ROOT.glob("*.py")) == []


def test_every_source_directory_is_a_package():
    for directory in {path.parent for path in PACKAGE_DIR.rglob("*.py")}:
        assert (directory / "__init__.py").exists(), f"{directory} is missing __init__.py"


def test_public_exports_resolve():
    for module in (runtime, schemas, registry, utils):
        for name in getattr(module, "__all__", ()):
            assert hasattr(module, name), f"{module.__name__}.{name} is exported but missing"
    assert collabhub.MasterOrchestrator is runtime.MasterOrchestrator
