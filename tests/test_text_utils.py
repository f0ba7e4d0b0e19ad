import pytest

from buildmaster.src.utils.text_utils import clean_text, content_fingerprint, normalize_component_type, truncate


def test_clean_text_strips_invisible_and_whitespace():
    raw = "\ufeff  Ryzen\u200b 7   7800X3D \n\n\n\n  8 cores\t\t16 threads  "
    assert clean_text(raw) == "Ryzen 7 7800X3D\n\n8 cores 16 threads"


def test_content_fingerprint_is_stable():
    assert content_fingerprint("abc") == content_fingerprint("abc")
    assert content_fingerprint("abc") != content_fingerprint("abd")
    assert len(content_fingerprint("abc")) == 64


@pytest.mark.parametrize("label, expected", [
    ("CPU", "CPU"),
    ("  Power Supply ", "Power Supply"),
    ("M.2 SSD", "M.2 SSD"),
    ("Case (ATX)", "Case (ATX)"),
    ("", None),
    ("   ", None),
    (None, None),
    ("GPU;DROP", None),
    ("-GPU", None),
    ("x" * 65, None),
])
def test_normalize_component_type(label, expected):
    assert normalize_component_type(label) == expected


def test_truncate():
    assert truncate("short", 50) == "short"
    assert truncate("multi\nline   text", 50) == "multi line text"
    long = "a" * 60
    assert len(truncate(long, 50)) == 50
    assert truncate(long, 50).endswith("…")
