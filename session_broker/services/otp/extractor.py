"""OTP extraction from free text.

Finds the most likely numeric one-time passcode in an email subject, preview
or body. A digit run close to an OTP keyword is preferred over any other digit
run in the text, so phone numbers, dates and order references elsewhere in a
transactional email are not mistaken for the code.
"""

import re
from html.parser import HTMLParser
from typing import List, Optional, Pattern

from ...core.exceptions import OtpMalformedError, OtpTooShortError

# Arabic-Indic (U+0660..U+0669) and Extended Arabic-Indic (U+06F0..U+06F9) digits
_DIGIT_TRANSLATION = str.maketrans(
    {
        **{chr(0x0660 + i): str(i) for i in range(10)},
        **{chr(0x06F0 + i): str(i) for i in range(10)},
    }
)

OTP_KEYWORDS: List[str] = [
    "otp",
    "code",
    "verification",
    "verify",
    "login",
    "رمز",  # code
    "تحقق",  # verify
    "تأكيد",  # confirmation
    "التحقق",  # the verification
]

_KEYWORD_PATTERN: Pattern = re.compile("|".join(OTP_KEYWORDS), re.IGNORECASE)

WINDOW_BEFORE = 80
WINDOW_AFTER = 160


def normalize_digits(text: Optional[str]) -> str:
    """Map Arabic-Indic digit scripts to ASCII digits."""
    if not text:
        return ""
    return text.translate(_DIGIT_TRANSLATION)


def _digit_run_pattern(min_len: int, max_len: int) -> Pattern:
    # ASCII mode keeps \b and \d aligned with the normalized ASCII digits
    return re.compile(rf"\b(\d{{{min_len},{max_len}}})\b", re.ASCII)


def extract_otp(text: Optional[str], min_len: int = 4, max_len: int = 8) -> Optional[str]:
    """
    Extract an OTP code from text.

    Args:
        text: Subject, preview or body text
        min_len: Shortest digit run accepted
        max_len: Longest digit run accepted

    Returns:
        The code, or None when no bounded digit run of the right length exists
        (an empty or inverted length window matches nothing)
    """
    if min_len < 1 or min_len > max_len:
        return None
    normalized = normalize_digits(text)
    if not normalized:
        return None

    digits = _digit_run_pattern(min_len, max_len)

    keyword = _KEYWORD_PATTERN.search(normalized)
    if keyword:
        start = max(0, keyword.start() - WINDOW_BEFORE)
        end = min(len(normalized), keyword.start() + WINDOW_AFTER)
        match = digits.search(normalized[start:end])
        if match:
            return match.group(1)

    match = digits.search(normalized)
    return match.group(1) if match else None


def validate_otp(code: str, min_length: int = 4) -> str:
    """
    Check the basic shape of a resolved OTP before it is typed into the form.

    Raises:
        OtpMalformedError: If the code is not a plain ASCII digit string
        OtpTooShortError: If the code has fewer than ``min_length`` digits
    """
    if not re.fullmatch(r"[0-9]+", code or ""):
        raise OtpMalformedError(f"OTP is not a digit string (length={len(code or '')})")
    if len(code) < min_length:
        raise OtpTooShortError(len(code), min_length)
    return code


class HTMLTextExtractor(HTMLParser):
    """Extract plain text from HTML content."""

    def __init__(self):
        super().__init__()
        self.text = []
        self.in_script = False
        self.in_style = False

    def handle_starttag(self, tag, attrs):
        if tag.lower() == "script":
            self.in_script = True
        elif tag.lower() == "style":
            self.in_style = True

    def handle_endtag(self, tag):
        if tag.lower() == "script":
            self.in_script = False
        elif tag.lower() == "style":
            self.in_style = False

    def handle_data(self, data):
        if not self.in_script and not self.in_style:
            self.text.append(data)

    def get_text(self) -> str:
        return " ".join(self.text)


def html_to_text(html: str) -> str:
    """Flatten an HTML email body to text for extraction."""
    extractor = HTMLTextExtractor()
    extractor.feed(html)
    extractor.close()
    return re.sub(r"\s+", " ", extractor.get_text()).strip()
