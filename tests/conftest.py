import pathlib
import site

import pytest
from typed_sqlite import loaders

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def isolate_loader_registry():
    """Restore the loader registry and its resolution cache after each test."""
    saved = dict(loaders._LOADER_REGISTRY)
    yield
    loaders._LOADER_REGISTRY.clear()
    loaders._LOADER_REGISTRY.update(saved)
    loaders._resolve_cache.clear()


pytest_plugins = [
    'tests.fixtures.values',
    'tests.fixtures.sqlite',
]
