"""Tests for the parsed-source cache and name resolution."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from covenant.analysis.source import (
    SourceCache,
    clear_source_cache,
    get_source_cache,
    module_name_for,
)
from covenant.foundation.errors import ErrorCode

SCOPED_MODULE = """
    import os.path
    import collections.abc as cabc
    from typing import TYPE_CHECKING

    from . import errors
    from .errors import IOFailure as IOF
    from ..other import Thing
    from .... import too_far

    if TYPE_CHECKING:
        from shop.models import Record

    try:
        import ujson as json
    except ImportError:
        import json


    class Local:
        pass


    CONSTANT = 1
"""


@pytest.fixture
def scoped(write_package, cache: SourceCache):
    root = write_package({"sub/mod.py": SCOPED_MODULE, "sub/errors.py": "class IOFailure(Exception): ...\n"})
    return cache.parse(root / "shop" / "sub" / "mod.py")


class TestModuleName:
    """Module names from package layout."""

    def test_src_layout(self, write_package) -> None:
        root = write_package({"sub/mod.py": "x = 1\n"})
        assert module_name_for(root / "shop" / "sub" / "mod.py") == "shop.sub.mod"

    def test_package_init(self, write_package) -> None:
        root = write_package({})
        assert module_name_for(root / "shop" / "__init__.py") == "shop"

    def test_loose_file(self, tmp_path: Path) -> None:
        path = tmp_path / "script.py"
        path.write_text("x = 1\n")
        assert module_name_for(path) == "script"


class TestResolveName:
    """Alias and definition resolution."""

    def test_imports(self, scoped) -> None:
        assert scoped.module == "shop.sub.mod"
        assert scoped.resolve_name("os") == "os"
        assert scoped.resolve_name("cabc") == "collections.abc"
        assert scoped.resolve_name("json") == "json"

    def test_relative_imports(self, scoped) -> None:
        assert scoped.resolve_name("errors") == "shop.sub.errors"
        assert scoped.resolve_name("IOF") == "shop.sub.errors.IOFailure"
        assert scoped.resolve_name("Thing") == "shop.other.Thing"
        assert scoped.resolve_name("too_far") is None

    def test_guarded_imports(self, scoped) -> None:
        assert scoped.resolve_name("Record") == "shop.models.Record"

    def test_definitions_and_builtins(self, scoped) -> None:
        assert scoped.resolve_name("Local") == "shop.sub.mod.Local"
        assert scoped.resolve_name("CONSTANT") == "shop.sub.mod.CONSTANT"
        assert scoped.resolve_name("ValueError") == "ValueError"
        assert scoped.resolve_name("some_local") is None

    def test_resolve_dotted(self, scoped) -> None:
        assert scoped.resolve_dotted("errors.IOFailure") == "shop.sub.errors.IOFailure"
        assert scoped.resolve_dotted("cabc.Sequence") == "collections.abc.Sequence"
        assert scoped.resolve_dotted("unknown.Thing") == "unknown.Thing"

    def test_package_relative_import(self, write_package, cache: SourceCache) -> None:
        root = write_package({"__init__.py": "from .errors import IOFailure\n"})
        parsed = cache.parse(root / "shop" / "__init__.py")
        assert parsed.is_package
        assert parsed.resolve_name("IOFailure") == "shop.errors.IOFailure"


class TestSourceCache:
    """Memoization and failure handling."""

    def test_parse_once(self, write_package, cache: SourceCache) -> None:
        root = write_package({"mod.py": "class A: ...\n"})
        path = root / "shop" / "mod.py"

        first = cache.parse(path)
        second = cache.parse(path)

        assert first is second
        assert cache.reads == 1
        assert path in cache

    def test_relative_and_absolute_paths_share_an_entry(self, write_package, cache: SourceCache) -> None:
        write_package({"mod.py": "class A: ...\n"})
        relative = Path("src/shop/mod.py")

        assert cache.parse(relative) is cache.parse(relative.resolve())
        assert cache.reads == 1
        assert len(cache) == 1
        assert "src/shop/mod.py" in cache
        assert 42 not in cache

    def test_missing_file_is_remembered(self, tmp_path: Path, cache: SourceCache) -> None:
        path = tmp_path / "missing.py"

        assert cache.parse(path) is None
        assert cache.parse(path) is None
        assert cache.reads == 1
        assert cache.failures[path.resolve()].code == ErrorCode.SOURCE_UNREADABLE

    def test_syntax_error(self, tmp_path: Path, cache: SourceCache, caplog) -> None:
        path = tmp_path / "broken.py"
        path.write_text("class Broken(:\n")

        assert cache.parse(path) is None
        assert cache.failures[path.resolve()].code == ErrorCode.SOURCE_SYNTAX_ERROR
        assert "CV-2002" in caplog.text

    def test_concurrent_callers_parse_once(self, write_package, cache: SourceCache) -> None:
        root = write_package({"mod.py": "class A: ...\n"})
        path = root / "shop" / "mod.py"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.parse(path), range(32)))

        assert all(r is results[0] for r in results)
        assert cache.reads == 1

    def test_clear(self, write_package, cache: SourceCache) -> None:
        root = write_package({"mod.py": "class A: ...\n"})
        cache.parse(root / "shop" / "mod.py")
        cache.parse(root / "missing.py")

        cache.clear()

        assert len(cache) == 0
        assert cache.failures == {}
        assert cache.reads == 0

    def test_explicit_module_name(self, write_package, cache: SourceCache) -> None:
        root = write_package({"mod.py": "class A: ...\n"})
        parsed = cache.parse(root / "shop" / "mod.py", module="renamed.mod")
        assert parsed.module == "renamed.mod"


class TestGlobalCache:
    """Process-wide cache accessors."""

    def test_singleton(self) -> None:
        assert get_source_cache() is get_source_cache()

    def test_clear(self, write_package) -> None:
        root = write_package({"mod.py": "class A: ...\n"})
        cache = get_source_cache()
        cache.parse(root / "shop" / "mod.py")

        clear_source_cache()

        assert len(cache) == 0
