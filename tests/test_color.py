import pytest

from imgrelay.color import Color, color_from_hex


def test_long_form_red():
    assert color_from_hex("ff0000") == Color(255, 0, 0)


@pytest.mark.parametrize("short", ["abc", "000", "fff", "1A9", "c0f"])
def test_short_form_matches_doubled_long_form(short):
    doubled = "".join(ch * 2 for ch in short)
    assert color_from_hex(short) == color_from_hex(doubled)


@pytest.mark.parametrize(
    "color",
    [Color(0, 0, 0), Color(12, 200, 7), Color(255, 128, 1), Color(17, 34, 51)],
)
def test_round_trip_through_hex(color):
    text = f"{color.r:02x}{color.g:02x}{color.b:02x}"
    assert color_from_hex(text) == color
    assert color_from_hex(text.upper()) == color


@pytest.mark.parametrize(
    "bad", ["", "ff", "ffff", "fffff", "fffffff", "#fff", "ggg", "12345z", " fff"]
)
def test_invalid_colors_raise(bad):
    with pytest.raises(ValueError, match="Invalid hex color"):
        color_from_hex(bad)


def test_error_message_contains_input():
    with pytest.raises(ValueError) as excinfo:
        color_from_hex("xyz")
    assert "xyz" in str(excinfo.value)