import pytest

from mining_comps.units import (
    gold_equivalent,
    koz_to_moz,
    moz_to_koz,
    parse_abbreviated_number,
    silver_to_gold_equivalent,
)


def test_silver_to_gold_equivalent():
    assert silver_to_gold_equivalent(80.0) == pytest.approx(1.0)
    assert silver_to_gold_equivalent(90.0, ratio=90) == pytest.approx(1.0)
    assert silver_to_gold_equivalent(None) is None
    with pytest.raises(ValueError):
        silver_to_gold_equivalent(10.0, ratio=0)


def test_gold_equivalent_combines_metals():
    assert gold_equivalent(1.2, 80.0) == pytest.approx(2.2)
    assert gold_equivalent(1.2, None) == pytest.approx(1.2)
    assert gold_equivalent(None, 160.0) == pytest.approx(2.0)
    assert gold_equivalent(None, None) is None


def test_ounce_scaling():
    assert koz_to_moz(1500.0) == pytest.approx(1.5)
    assert moz_to_koz(0.25) == pytest.approx(250.0)
    assert koz_to_moz(None) is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1.2B", 1.2e9),
        ("$650M", 6.5e8),
        ("12.5 K", 12500.0),
        ("1,234.5", 1234.5),
        ("CAD 44.21", 44.21),
        ("5 Moz", 5.0),
        ("1.2 M oz", 1.2),
        ("1.2M oz", 1.2),
        ("850 K oz", 850.0),
        ("3M", 3e6),
        ("−3.5", -3.5),
    ],
)
def test_parse_abbreviated_number(text, expected):
    assert parse_abbreviated_number(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", [None, "", "N/A", "—", "0", "$0.00"])
def test_parse_abbreviated_number_missing(text):
    assert parse_abbreviated_number(text) is None
