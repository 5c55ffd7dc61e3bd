"""
Tests for FrequencyConfig construction, presets and loaders.
"""

from datetime import timedelta

import pytest

from popup_frequency.config import PRESETS, FrequencyConfig, load_config
from popup_frequency.errors import InvalidArgument


class TestDefaults:
    def test_default_policy_values(self):
        config = FrequencyConfig()
        assert config.max_per_day == 3
        assert config.max_per_session == 1
        assert config.default_cooldown == timedelta(hours=1)
        assert config.adaptive_learning is True
        assert config.dismisser_admit_rate == pytest.approx(0.3)
        assert config.converted_admit_rate == pytest.approx(0.1)

    def test_rejects_negative_cap(self):
        with pytest.raises(InvalidArgument):
            FrequencyConfig(max_per_day=-1)

    def test_rejects_rate_out_of_range(self):
        with pytest.raises(InvalidArgument):
            FrequencyConfig(converted_admit_rate=1.5)

    def test_rejects_keep_larger_than_limit(self):
        with pytest.raises(InvalidArgument):
            FrequencyConfig(history_limit=10, history_keep=20)


class TestPresets:
    @pytest.mark.parametrize("name", sorted(PRESETS))
    def test_every_preset_builds(self, name):
        config = FrequencyConfig.preset(name)
        assert config.max_per_day == PRESETS[name]["max_per_day"]

    def test_minimal_disables_adaptive_learning(self):
        config = FrequencyConfig.preset("MINIMAL")
        assert config.adaptive_learning is False
        assert config.default_cooldown == timedelta(days=7)

    def test_overrides_apply_on_top_of_preset(self):
        config = FrequencyConfig.preset("aggressive", max_per_session=9)
        assert config.max_per_day == 5
        assert config.max_per_session == 9

    def test_unknown_preset(self):
        with pytest.raises(InvalidArgument, match="unknown preset"):
            FrequencyConfig.preset("reckless")


class TestLoaders:
    def test_from_mapping_reads_seconds(self):
        config = FrequencyConfig.from_mapping({"default_cooldown": 90, "max_per_day": None})
        assert config.default_cooldown == timedelta(seconds=90)
        assert config.max_per_day is None

    def test_from_mapping_rejects_unknown_keys(self):
        with pytest.raises(InvalidArgument, match="unknown configuration keys"):
            FrequencyConfig.from_mapping({"max_per_year": 4})

    def test_from_env_uses_given_mapping_only(self):
        env = {
            "POPUP_PRESET": "moderate",
            "POPUP_MAX_PER_DAY": "7",
            "POPUP_MAX_PER_SESSION": "unlimited",
            "POPUP_DEFAULT_COOLDOWN_SECONDS": "120",
            "POPUP_ADAPTIVE_LEARNING": "off",
        }
        config = FrequencyConfig.from_env(env)
        assert config.max_per_day == 7
        assert config.max_per_session is None
        assert config.default_cooldown == timedelta(seconds=120)
        assert config.adaptive_learning is False

    def test_from_env_empty_gives_defaults(self):
        assert FrequencyConfig.from_env({}) == FrequencyConfig()

    def test_from_env_bad_integer(self):
        with pytest.raises(InvalidArgument):
            FrequencyConfig.from_env({"POPUP_MAX_PER_DAY": "lots"})

    def test_to_dict_round_trips_through_from_mapping(self):
        config = FrequencyConfig.preset("conservative")
        assert FrequencyConfig.from_mapping(config.to_dict()) == config

    def test_load_config_yaml_section(self, tmp_path):
        path = tmp_path / "frequency.yaml"
        path.write_text(
            "frequency:\n  preset: aggressive\n  default_cooldown: 600\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.max_per_day == 5
        assert config.default_cooldown == timedelta(minutes=10)

    def test_load_config_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path) == FrequencyConfig()

    def test_load_config_rejects_list(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(InvalidArgument):
            load_config(path)
