"""Device descriptor parsing, fingerprinting and network origin normalization.

Descriptor parsing is best-effort labelling for humans; it is not a security
boundary. The fingerprint is what binds a refresh token to its device.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

UNKNOWN = "Unknown"

_BROWSER_VERSION_PATTERNS = {
    "Microsoft Edge": re.compile(r"edge?/(\d+)"),
    "Opera": re.compile(r"opr/(\d+)"),
    "Chrome": re.compile(r"chrome/(\d+)"),
    "Firefox": re.compile(r"firefox/(\d+)"),
    "Safari": re.compile(r"version/(\d+)"),
}


@dataclass(frozen=True)
class DeviceLabels:
    browser: str
    os: str
    device_name: str


def _detect_browser(ua: str) -> str:
    if "edg/" in ua or "edge/" in ua:
        return "Microsoft Edge"
    if "opr/" in ua or "opera/" in ua:
        return "Opera"
    if "chrome/" in ua:
        return "Chrome"
    if "firefox/" in ua:
        return "Firefox"
    if "safari/" in ua:
        return "Safari"
    if "msie" in ua or "trident/" in ua:
        return "Internet Explorer"
    return UNKNOWN


def _detect_os(ua: str) -> str:
    if "windows" in ua:
        return "Windows"
    # iPhone/iPad descriptors also mention "mac os x"
    if "iphone" in ua:
        return "iOS (iPhone)"
    if "ipad" in ua:
        return "iOS (iPad)"
    if "mac os x" in ua or "macintosh" in ua:
        return "macOS"
    if "android" in ua:
        return "Android"
    if "cros" in ua:
        return "Chrome OS"
    if "linux" in ua:
        return "Linux"
    return UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> DeviceLabels:
    """Extract browser (with major version), OS and a display name from a descriptor."""
    if not user_agent:
        return DeviceLabels(browser=UNKNOWN, os=UNKNOWN, device_name="Unknown Device")

    ua = user_agent.lower()
    browser = _detect_browser(ua)
    pattern = _BROWSER_VERSION_PATTERNS.get(browser)
    match = pattern.search(ua) if pattern else None
    if match:
        browser = f"{browser} {match.group(1)}"

    os_name = _detect_os(ua)
    is_mobile = "mobile" in ua or "iphone" in ua or "android" in ua
    device_type = "Mobile" if is_mobile else "Desktop"
    return DeviceLabels(browser=browser, os=os_name, device_name=f"{os_name} {device_type} - {browser}")


def generate_device_fingerprint(user_agent: Optional[str]) -> str:
    """Stable 32-hex-char hash for a browser/OS/descriptor combination."""
    labels = parse_user_agent(user_agent)
    # Drop the browser version so minor upgrades keep the same base.
    base_browser = labels.browser.split(" ")[0]
    base = f"{base_browser}:{labels.os}:{user_agent or 'unknown'}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()[:32]


def normalize_ip(ip: Optional[str]) -> str:
    """Normalize a network origin: IPv6-mapped IPv4 and loopback aliases."""
    if not ip:
        return "unknown"
    ip = ip.strip()
    if ip.startswith("::ffff:"):
        return ip[len("::ffff:"):]
    if ip == "::1":
        return "127.0.0.1"
    return ip


def mask_fingerprint(fingerprint: Optional[str]) -> str:
    """Log-safe prefix of a fingerprint."""
    if not fingerprint:
        return "none"
    return fingerprint[:8] + "..."
