import types

import nitroRain
from nitroRain import Analysis, derive_rainfall_features, join_rainfall, run_analysis


def test_top_level_imports():
    """
    Test that key functions can be imported from the top-level package.
    """
    assert isinstance(derive_rainfall_features, types.FunctionType)
    assert isinstance(join_rainfall, types.FunctionType)
    assert isinstance(run_analysis, types.FunctionType)
    assert issubclass(Analysis, object)


def test_all_names_are_exported():
    for name in nitroRain.__all__:
        assert hasattr(nitroRain, name)


def test_version_is_present():
    """
    Test that the package has a __version__ attribute.
    """
    assert hasattr(nitroRain, "__version__")
    assert isinstance(nitroRain.__version__, str)
