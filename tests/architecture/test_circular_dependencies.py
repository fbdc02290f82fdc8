import importlib

import pytest

# Leaf modules first, so a failure points at the lowest broken layer
MODULES = [
    'polydb.exceptions',
    'polydb.sql',
    'polydb.types',
    'polydb.options',
    'polydb.cache',
    'polydb.dialect.base',
    'polydb.dialect.postgres',
    'polydb.dialect.mysql',
    'polydb.dialect.sqlite',
    'polydb.dialect.mongodb',
    'polydb.dialect',
    'polydb.translator',
    'polydb.adapters.base',
    'polydb.adapters.relational',
    'polydb.adapters.document',
    'polydb.adapters',
    'polydb.factory',
    'polydb.service',
    'polydb',
]


@pytest.mark.parametrize('module', MODULES)
def test_module_imports(module):
    """Test that each module imports without circular dependencies"""
    assert importlib.import_module(module) is not None


def test_public_names_resolve():
    """Test that everything in polydb.__all__ is importable from the package"""
    polydb = importlib.import_module('polydb')
    missing = [name for name in polydb.__all__ if not hasattr(polydb, name)]
    assert missing == []


if __name__ == '__main__':
    __import__('pytest').main([__file__])
