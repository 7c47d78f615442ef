"""Pytest fixtures for Covenant tests."""

import os
import textwrap
from collections.abc import Callable
from pathlib import Path

import pytest

from covenant.analysis.source import SourceCache
from covenant.analysis.symbols import ClassIndex
from covenant.config import reset_config
from covenant.foundation.logging import reset_logging

WritePackage = Callable[..., Path]
BuildIndex = Callable[..., ClassIndex]


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user and project config files and COVENANT_* variables out of tests."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    for key in [k for k in os.environ if k.startswith("COVENANT_")]:
        monkeypatch.delenv(key)
    reset_config()


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop the handlers configure_logging installs."""
    yield
    reset_logging()


@pytest.fixture
def cache() -> SourceCache:
    """A fresh source cache per test."""
    return SourceCache()


@pytest.fixture
def write_package(tmp_path: Path) -> WritePackage:
    """Write a package of modules under ``tmp_path/src`` and return that root.

    Sources are dedented, so they can be written inline in tests.
    """

    def _write(files: dict[str, str], package: str = "shop") -> Path:
        root = tmp_path / "src"
        package_dir = root / package
        package_dir.mkdir(parents=True, exist_ok=True)
        (package_dir / "__init__.py").touch()
        for relative, source in files.items():
            path = package_dir / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            (path.parent / "__init__.py").touch()
            path.write_text(textwrap.dedent(source), encoding="utf-8")
        return root

    return _write


@pytest.fixture
def build_index(write_package: WritePackage, cache: SourceCache) -> BuildIndex:
    """Write a package and index it."""

    def _build(files: dict[str, str], package: str = "shop") -> ClassIndex:
        return ClassIndex.build([write_package(files, package)], cache=cache)

    return _build


@pytest.fixture
def errors_module() -> str:
    """An exception hierarchy shared by the fixture packages."""
    return """
    class ShopError(Exception):
        pass


    class IOFailure(ShopError):
        pass


    class FileNotFoundFailure(IOFailure):
        pass


    class RuntimeFailure(ShopError):
        pass


    class ValidationFailure(ShopError):
        pass
    """
