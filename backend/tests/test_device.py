import pytest

from conftest import CHROME_MAC, FIREFOX_WINDOWS, SAFARI_IPHONE
from sessionguard.core.device import generate_device_fingerprint, mask_fingerprint, normalize_ip, parse_user_agent

EDGE_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36 Edg/120.0.2210.91"
)
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.6099.43 Mobile Safari/537.36"
)


@pytest.mark.parametrize("user_agent, browser, os_name, device_name", [
    (CHROME_MAC, "Chrome 120", "macOS", "macOS Desktop - Chrome 120"),
    (FIREFOX_WINDOWS, "Firefox 121", "Windows", "Windows Desktop - Firefox 121"),
    (SAFARI_IPHONE, "Safari 17", "iOS (iPhone)", "iOS (iPhone) Mobile - Safari 17"),
    (EDGE_WINDOWS, "Microsoft Edge 120", "Windows", "Windows Desktop - Microsoft Edge 120"),
    (CHROME_ANDROID, "Chrome 120", "Android", "Android Mobile - Chrome 120"),
    (None, "Unknown", "Unknown", "Unknown Device"),
])
def test_parse_user_agent(user_agent, browser, os_name, device_name):
    labels = parse_user_agent(user_agent)
    assert labels.browser == browser
    assert labels.os == os_name
    assert labels.device_name == device_name


def test_fingerprint_is_stable_and_distinct():
    assert generate_device_fingerprint(CHROME_MAC) == generate_device_fingerprint(CHROME_MAC)
    assert generate_device_fingerprint(CHROME_MAC) != generate_device_fingerprint(FIREFOX_WINDOWS)
    assert len(generate_device_fingerprint(None)) == 32


@pytest.mark.parametrize("raw, expected", [
    ("::ffff:192.168.1.5", "192.168.1.5"),
    ("::1", "127.0.0.1"),
    (" 10.0.0.1 ", "10.0.0.1"),
    ("2001:db8::1", "2001:db8::1"),
    (None, "unknown"),
    ("", "unknown"),
])
def test_normalize_ip(raw, expected):
    assert normalize_ip(raw) == expected


def test_mask_fingerprint():
    assert mask_fingerprint("abcdef0123456789") == "abcdef01..."
    assert mask_fingerprint(None) == "none"
