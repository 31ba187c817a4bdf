"""Browser automation for the interactive portal login."""

from .executable import find_browser_executable
from .page_checks import is_server_error_text, raise_if_server_error
from .portal_acquirer import PlaywrightPortalAcquirer, is_post_login

__all__ = [
    "find_browser_executable",
    "is_server_error_text",
    "raise_if_server_error",
    "PlaywrightPortalAcquirer",
    "is_post_login",
]
