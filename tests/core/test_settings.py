"""Tests for feature flags and settings."""

import pytest

from asset_registry.config.settings import get_all_flags, get_setting, is_enabled, set_flag


class TestFeatureFlags:

    def test_defaults(self):
        flags = get_all_flags()
        assert set(flags) == {"preserve_source_global_ids", "encode_non_ascii_text"}

    def test_set_flag(self, restore_flags):
        set_flag("encode_non_ascii_text", False)
        assert is_enabled("encode_non_ascii_text") is False

    def test_unknown_flag(self):
        with pytest.raises(KeyError, match="Available flags"):
            is_enabled("no_such_flag")
        with pytest.raises(KeyError):
            set_flag("no_such_flag", True)

    def test_get_all_flags_is_a_copy(self, restore_flags):
        flags = get_all_flags()
        flags["encode_non_ascii_text"] = not flags["encode_non_ascii_text"]
        assert get_all_flags() != flags


class TestSettings:

    def test_known_settings(self):
        assert get_setting("default_pset_name") == "Pset_AssetCustom"
        assert get_setting("tag_max_attempts") > 0

    def test_unknown_setting(self):
        with pytest.raises(KeyError, match="Available settings"):
            get_setting("nope")
