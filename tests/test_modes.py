import pytest

from proxyrules.modes import EnhancedMode, Mode


@pytest.mark.parametrize("member", list(Mode))
def test_mode_round_trip(member):
    assert Mode.parse(str(member)) is member


@pytest.mark.parametrize("member", list(EnhancedMode))
def test_enhanced_mode_round_trip(member):
    assert EnhancedMode.parse(str(member)) is member


@pytest.mark.parametrize(
    "text, member",
    [
        ("Global", Mode.GLOBAL),
        ("Rule", Mode.RULE),
        ("Direct", Mode.DIRECT),
    ],
)
def test_mode_names(text, member):
    assert Mode.parse(text) is member
    assert str(member) == text


@pytest.mark.parametrize(
    "text, member",
    [
        ("normal", EnhancedMode.NORMAL),
        ("fake-ip", EnhancedMode.FAKEIP),
        ("redir-host", EnhancedMode.MAPPING),
    ],
)
def test_enhanced_mode_names(text, member):
    assert EnhancedMode.parse(text) is member
    assert str(member) == text


@pytest.mark.parametrize("text", ["rule", "Unknown", ""])
def test_mode_rejects_unknown(text):
    with pytest.raises(ValueError, match="invalid mode"):
        Mode.parse(text)


@pytest.mark.parametrize("text", ["fakeip", "mapping", "unknown"])
def test_enhanced_mode_rejects_unknown(text):
    with pytest.raises(ValueError, match="invalid mode"):
        EnhancedMode.parse(text)