"""Smoke test: verify the seg_pipeline package is importable."""

import seg_pipeline


def test_package_version() -> None:
    """Package must declare a __version__ string."""
    assert isinstance(seg_pipeline.__version__, str)
    assert seg_pipeline.__version__ == "0.0.1"
