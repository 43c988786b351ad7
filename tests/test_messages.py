from decimal import Decimal

from glucose_alerts.messages import format_value, render_message
from glucose_alerts.models.rules import ConditionType, Severity

from conftest import make_reading, make_rule


def test_format_value_trims_trailing_zeros() -> None:
    assert format_value(Decimal("70")) == "70"
    assert format_value(Decimal("65.50")) == "65.5"
    assert format_value(Decimal("1E+2")) == "100"
    assert format_value(None) == "n/a"


def test_default_messages_per_condition() -> None:
    reading = make_reading(40)
    low = make_rule(
        condition_type=ConditionType.BELOW_THRESHOLD,
        threshold_value=55,
        severity=Severity.URGENT,
        name="Urgent low",
    )
    assert render_message(low, reading) == "URGENT: Glucose 40 is below 55 [Urgent low]"

    band = make_rule(
        condition_type=ConditionType.RANGE_EXIT,
        threshold_value=120,
        range_bound=Decimal("40"),
        severity=Severity.INFO,
    )
    assert render_message(band, reading) == "INFO: Glucose 40 is outside 80-160"


def test_rate_message_rounds_rate() -> None:
    rule = make_rule(
        condition_type=ConditionType.RATE_OF_CHANGE,
        threshold_value=-2,
        rate_window_minutes=15,
    )
    text = render_message(rule, make_reading(90), Decimal("-3.333333"))
    assert text == "WARN: Glucose changing -3.3/min (limit -2/min)"


def test_custom_template() -> None:
    rule = make_rule(message_template="{rule_name}: {value} mg/dL from {device_id}")
    assert render_message(rule, make_reading(211)) == "WARN: r1: 211 mg/dL from cgm-1"


def test_bad_template_falls_back_to_default(caplog) -> None:
    rule = make_rule(message_template="{value} vs {nonsense}")
    with caplog.at_level("WARNING"):
        text = render_message(rule, make_reading(211))
    assert text == "WARN: Glucose 211 is above 180"
    assert "Bad message template" in caplog.text


def test_attribute_lookup_in_template_falls_back_to_default() -> None:
    rule = make_rule(message_template="{value.real} mg/dL")
    assert render_message(rule, make_reading(211)) == "WARN: Glucose 211 is above 180"
