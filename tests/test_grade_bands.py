import pytest

from classrecord.grade_bands import band, numeric_value, remarks


@pytest.mark.parametrize(
    "percentage,label",
    [
        (100, "1.00"),
        (97.5, "1.00"),
        (97.49, "1.25"),
        (94.5, "1.25"),
        (91.5, "1.50"),
        (86.5, "1.75"),
        (85.5, "1.75"),
        (81.5, "2.00"),
        (76.0, "2.25"),
        (75.99, "2.50"),
        (70.5, "2.50"),
        (65.0, "2.75"),
        (59.5, "3.00"),
        (59.49, "5.00"),
        (0, "5.00"),
    ],
)
def test_band_lower_bounds_are_inclusive(percentage, label):
    assert band(percentage) == label


def test_band_without_a_percentage_fails():
    assert band(None) == "5.00"
    assert band(float("nan")) == "5.00"


def test_remarks_follow_the_passing_line():
    assert remarks("1.00") == "PASSED"
    assert remarks("3.00") == "PASSED"
    assert remarks("5.00") == "FAILED"
    assert remarks(None) == "FAILED"


def test_numeric_value_of_unparseable_label_is_zero():
    assert numeric_value("2.75") == 2.75
    assert numeric_value("n/a") == 0.0
