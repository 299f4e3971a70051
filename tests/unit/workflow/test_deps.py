"""Tests for loading the conflict auto-fix hook."""

import pytest

from backport.core.config import LLMConfig
from backport.core.errors import ConfigurationError
from backport.workflow.deps import load_auto_fix_hook


def test_no_hook_configured(config):
    assert load_auto_fix_hook(config) is None


def test_hook_from_module(config):
    config.backport.auto_fix_conflicts = "os.path:exists"

    import os.path
    assert load_auto_fix_hook(config) is os.path.exists


@pytest.mark.parametrize("value", ["os.path", ":exists", "os.path:"])
def test_malformed_hook(config, value):
    config.backport.auto_fix_conflicts = value

    with pytest.raises(ConfigurationError) as exc_info:
        load_auto_fix_hook(config)

    assert "package.module:function" in exc_info.value.message


def test_unknown_module(config):
    config.backport.auto_fix_conflicts = "no_such_module_here:fix"

    with pytest.raises(ConfigurationError) as exc_info:
        load_auto_fix_hook(config)

    assert "no_such_module_here" in exc_info.value.message


def test_attribute_not_callable(config):
    config.backport.auto_fix_conflicts = "os.path:sep"

    with pytest.raises(ConfigurationError, match="not callable"):
        load_auto_fix_hook(config)


def test_llm_hook_requires_llm_section(config):
    config.backport.auto_fix_conflicts = "llm"

    with pytest.raises(ConfigurationError, match="no llm section"):
        load_auto_fix_hook(config)


def test_llm_hook(config):
    config.backport.auto_fix_conflicts = "llm"
    config.llm = LLMConfig(model="test")

    hook = load_auto_fix_hook(config)

    assert callable(hook)
