"""Tests for top-level package exports."""

import pytest

import doclock
from doclock.core.lazy import make_getattr


def test_lazy_exports_resolve():
    from doclock.locks.scheduler import RetryScheduler

    assert doclock.RetryScheduler is RetryScheduler
    assert callable(doclock.run_locked_update)
    assert callable(doclock.main)


def test_unknown_attribute_raises():
    with pytest.raises(AttributeError):
        doclock.does_not_exist


def test_version_is_eager():
    assert doclock.__version__ == "0.3.0"


def test_make_getattr_requires_target_for_every_export():
    with pytest.raises(ValueError, match="Missing"):
        make_getattr("pkg", ["Missing"], mapping={})
