from decimal import Decimal
from types import SimpleNamespace

from bloodwatch.services.alerts.thresholds import (
    ThresholdConfig,
    ThresholdProfileResolver,
)


def test_default_profile_uses_priority_weight():
    profile = ThresholdProfileResolver().resolve("blood-group-o-minus")

    assert profile.critical_units == Decimal("140")
    assert profile.warning_units == Decimal("168")
    assert profile.step_down_units == Decimal("14")
    assert profile.priority_weight == Decimal("1.4")
    assert profile.has_override is False


def test_blank_category_resolves_as_overall():
    profile = ThresholdProfileResolver().resolve("  ")

    assert profile.critical_units == Decimal("100")
    assert profile.warning_units == Decimal("120")


def test_override_wins_and_is_case_insensitive():
    config = ThresholdConfig(category_overrides={"blood-group-o-minus": Decimal("50")})
    profile = ThresholdProfileResolver(config).resolve("Blood-Group-O-Minus")

    assert profile.critical_units == Decimal("50")
    assert profile.warning_units == Decimal("60")
    assert profile.has_override is True


def test_non_positive_override_is_ignored():
    config = ThresholdConfig(category_overrides={"overall": Decimal("0")})
    profile = ThresholdProfileResolver(config).resolve("overall")

    assert profile.critical_units == Decimal("100")
    assert profile.has_override is False


def test_out_of_range_inputs_are_clamped():
    config = ThresholdConfig(
        base_critical_units=Decimal("-5"),
        warning_multiplier=Decimal("0.5"),
        critical_step_down_percent=Decimal("3"),
    )
    profile = ThresholdProfileResolver(config).resolve("overall")

    assert profile.critical_units == Decimal("100")
    assert profile.warning_units == Decimal("101")
    assert profile.step_down_units == Decimal("100")


def test_step_down_never_below_one_unit():
    config = ThresholdConfig(
        base_critical_units=Decimal("5"),
        critical_step_down_percent=Decimal("0.01"),
    )
    profile = ThresholdProfileResolver(config).resolve("overall")

    assert profile.step_down_units == Decimal("1")


def test_config_from_settings_lowercases_override_keys():
    settings = SimpleNamespace(
        ALERT_BASE_CRITICAL_UNITS=Decimal("80"),
        ALERT_WARNING_MULTIPLIER=Decimal("1.5"),
        ALERT_CRITICAL_STEP_DOWN_PERCENT=Decimal("0.2"),
        ALERT_CATEGORY_CRITICAL_UNITS_OVERRIDES={"Blood-Group-A-Plus": "70"},
    )
    config = ThresholdConfig.from_settings(settings)

    assert config.base_critical_units == Decimal("80")
    assert config.category_overrides == {"blood-group-a-plus": Decimal("70")}
    profile = ThresholdProfileResolver(config).resolve("blood-group-a-plus")
    assert profile.critical_units == Decimal("70")
    assert profile.warning_units == Decimal("105")
