"""Hard-block detection on fetched markup, by raw substring matching.

A static response that carries a captcha or login wall is treated as a
failed tier instead of being handed to the extractor.
"""

from __future__ import annotations

from dataclasses import dataclass

# Selectors that indicate hard blocks
HARD_BLOCK_INDICATORS = [
    '[class*="captcha"]',
    '[id*="captcha"]',
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    '[class*="login-wall"]',
    '[class*="paywall"]',
    '[id*="login-gate"]',
    '[id*="px-captcha"]',
    '[class*="cf-challenge"]',
]

BLOCK_PAGE_PHRASES = (
    "access denied",
    "are you a robot",
    "unusual traffic",
    "verify you are human",
)


@dataclass
class BlockCheck:
    blocked: bool
    indicator: str | None = None


def _selector_to_html_pattern(selector: str) -> str:
    """Reduce an attribute selector to the substring it matches in raw HTML."""
    s = selector.lower().strip()
    if s.startswith("#"):
        return f'id="{s[1:]}"'
    if s.startswith("."):
        return s[1:]
    return s.split("[", 1)[-1].strip("[]").split("*=")[-1].strip('"').strip("'")


def detect_hard_block(html: str) -> BlockCheck:
    html_lower = html.lower()
    for indicator in HARD_BLOCK_INDICATORS:
        if _selector_to_html_pattern(indicator) in html_lower:
            return BlockCheck(blocked=True, indicator=indicator)
    # Block phrases only count on short interstitial pages
    if len(html_lower) < 20_000:
        for phrase in BLOCK_PAGE_PHRASES:
            if phrase in html_lower:
                return BlockCheck(blocked=True, indicator=phrase)
    return BlockCheck(blocked=False)
