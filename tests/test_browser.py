"""Tests for browser discovery, error-page detection and the portal login steps."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeClock
from playwright.async_api import Error as PlaywrightError

from session_broker.core.exceptions import (
    BrowserLaunchError,
    BrowserNotFoundError,
    LoginFlowError,
    PostLoginNotReachedError,
    UpstreamUnavailableError,
)
from session_broker.services.browser.executable import (
    LINUX_CANDIDATES,
    MACOS_CANDIDATES,
    candidate_paths,
    find_browser_executable,
    windows_candidates,
)
from session_broker.services.browser.page_checks import (
    capture_screenshot,
    is_server_error_text,
    page_shows_server_error,
    raise_if_server_error,
)
from session_broker.services.browser.portal_acquirer import (
    PlaywrightPortalAcquirer,
    is_login_url,
    is_post_login,
    launch_args,
)

SERVER_OOPS = "Oops! Something went wrong on the server. I-S oops"


class TestFindBrowserExecutable:
    """Tests for browser executable discovery."""

    def test_explicit_path_wins(self, tmp_path):
        """Test an existing configured path is used as-is."""
        browser = tmp_path / "chrome"
        browser.write_text("")

        assert find_browser_executable(str(browser), platform="linux") == str(browser)

    def test_missing_explicit_path_falls_back(self, tmp_path):
        """Test a stale override falls back to well-known locations."""
        fallback = tmp_path / "chromium"
        fallback.write_text("")

        with patch(
            "session_broker.services.browser.executable.candidate_paths",
            return_value=[str(fallback)],
        ):
            found = find_browser_executable(str(tmp_path / "missing"), platform="linux")

        assert found == str(fallback)

    def test_nothing_found(self):
        """Test BrowserNotFoundError when no candidate exists."""
        with patch(
            "session_broker.services.browser.executable.candidate_paths", return_value=[]
        ):
            with pytest.raises(BrowserNotFoundError):
                find_browser_executable(None, platform="linux")

    def test_candidates_per_platform(self):
        """Test the candidate list follows the platform."""
        assert candidate_paths("darwin", {}) == MACOS_CANDIDATES
        assert candidate_paths("linux", {}) == LINUX_CANDIDATES

    def test_windows_candidates(self):
        """Test Chrome is preferred over Edge and unset roots are skipped."""
        environ = {"PROGRAMFILES": "C:\\Program Files", "LOCALAPPDATA": "C:\\Users\\u\\AppData"}

        paths = windows_candidates(environ)

        assert paths == [
            "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
            "C:\\Users\\u\\AppData\\Google\\Chrome\\Application\\chrome.exe",
            "C:\\Program Files\\Microsoft\\Edge\\Application\\msedge.exe",
            "C:\\Users\\u\\AppData\\Microsoft\\Edge\\Application\\msedge.exe",
        ]
        assert candidate_paths("win32", environ) == paths


class TestServerErrorPage:
    """Tests for server-error page detection."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            (SERVER_OOPS, True),
            ("OOPS!   something went wrong on the server", True),
            ("i-s  oops", True),
            ("Welcome to the portal", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_server_error_text(self, text, expected):
        """Test the error page patterns are case and whitespace insensitive."""
        assert is_server_error_text(text) is expected

    @pytest.mark.asyncio
    async def test_unreadable_page_is_not_an_error(self):
        """Test evaluation failures count as no error page."""
        page = MagicMock()
        page.evaluate = AsyncMock(side_effect=PlaywrightError("Target closed"))

        assert await page_shows_server_error(page) is False

    @pytest.mark.asyncio
    async def test_raise_with_screenshot(self, tmp_path):
        """Test the error carries the screenshot path."""
        page = MagicMock()
        page.evaluate = AsyncMock(return_value=SERVER_OOPS)
        page.screenshot = AsyncMock()

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await raise_if_server_error(page, "after login", tmp_path)

        assert exc_info.value.where == "after login"
        assert exc_info.value.screenshot.startswith(str(tmp_path))
        assert exc_info.value.screenshot.endswith(".png")
        page.screenshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_raise_on_normal_page(self, tmp_path):
        """Test a normal page passes."""
        page = MagicMock()
        page.evaluate = AsyncMock(return_value="Dashboard")

        await raise_if_server_error(page, "landing", tmp_path)

    @pytest.mark.asyncio
    async def test_screenshot_failure_returns_none(self, tmp_path):
        """Test a failed screenshot is reported as None."""
        page = MagicMock()
        page.screenshot = AsyncMock(side_effect=PlaywrightError("closed"))

        assert await capture_screenshot(page, tmp_path) is None


class TestPostLoginDetection:
    """Tests for post-login heuristics."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://bayan.logisti.sa/login", True),
            ("https://bayan.logisti.sa/#/Login", True),
            ("https://bayan.logisti.sa/#/dashboard", False),
            ("https://bayan.logisti.sa/", False),
        ],
    )
    def test_is_login_url(self, url, expected):
        """Test login and OTP URLs are recognized."""
        assert is_login_url(url) is expected

    def test_dashboard_is_enough(self):
        """Test the dashboard selector alone means logged in."""
        assert is_post_login("https://bayan.logisti.sa/login", [], True)

    def test_session_cookie_off_login_url(self):
        """Test a session cookie counts only outside the login URL."""
        assert is_post_login("https://bayan.logisti.sa/#/home", ["JSESSIONID"], False)
        assert not is_post_login("https://bayan.logisti.sa/login", ["JSESSIONID"], False)
        assert not is_post_login("https://bayan.logisti.sa/#/home", ["other"], False)

    def test_launch_args(self):
        """Test the sandbox flags are added on Linux only."""
        assert "--no-sandbox" in launch_args("linux")
        assert "--no-sandbox" not in launch_args("darwin")
        assert "--disable-blink-features=AutomationControlled" in launch_args("win32")


def make_acquirer(tmp_path, clock=None, **kwargs):
    return PlaywrightPortalAcquirer(
        portal_url="https://bayan.logisti.sa/",
        portal_origin="https://bayan.logisti.sa",
        screenshots_dir=tmp_path,
        clock=clock or FakeClock(),
        platform="linux",
        **kwargs,
    )


class TestPlaywrightPortalAcquirer:
    """Tests for individual login steps with a mocked browser."""

    @pytest.mark.asyncio
    async def test_missing_browser(self, tmp_path, credentials):
        """Test discovery failure happens before Playwright starts."""
        acquirer = make_acquirer(tmp_path)

        with patch(
            "session_broker.services.browser.portal_acquirer.find_browser_executable",
            side_effect=BrowserNotFoundError(),
        ):
            with pytest.raises(BrowserNotFoundError):
                await acquirer.run(credentials, MagicMock())

    @pytest.mark.asyncio
    async def test_launch_failure(self, tmp_path):
        """Test a Playwright launch error becomes BrowserLaunchError."""
        playwright = MagicMock()
        playwright.chromium.launch = AsyncMock(side_effect=PlaywrightError("exec format error"))

        with pytest.raises(BrowserLaunchError) as exc_info:
            await make_acquirer(tmp_path)._launch(playwright, "/usr/bin/chromium")

        assert exc_info.value.recoverable is False

    @pytest.mark.asyncio
    async def test_navigation_failure_is_login_flow_error(self, tmp_path, credentials):
        """Test browser failures are reported with the failing step."""
        page = MagicMock()
        page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_CONNECTION_RESET"))
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)

        with pytest.raises(LoginFlowError) as exc_info:
            await make_acquirer(tmp_path)._login(context, credentials, MagicMock())

        assert exc_info.value.details == {"step": "navigate"}
        assert exc_info.value.recoverable is True

    @pytest.mark.asyncio
    async def test_server_error_on_landing(self, tmp_path, credentials):
        """Test the error page aborts the attempt before the login form."""
        page = MagicMock()
        page.goto = AsyncMock()
        page.wait_for_selector = AsyncMock()
        page.evaluate = AsyncMock(return_value=SERVER_OOPS)
        page.screenshot = AsyncMock()
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        resolver = MagicMock()
        resolver.capture_baseline = AsyncMock()

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await make_acquirer(tmp_path)._login(context, credentials, resolver)

        assert exc_info.value.where == "landing"
        resolver.capture_baseline.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_post_login_reached_by_cookie(self, tmp_path):
        """Test the wait ends once a session cookie is set off the login URL."""
        page = MagicMock()
        page.url = "https://bayan.logisti.sa/#/home"
        page.evaluate = AsyncMock(return_value="")
        page.query_selector = AsyncMock(return_value=None)
        context = MagicMock()
        context.cookies = AsyncMock(return_value=[{"name": "JSESSIONID", "value": "abc"}])

        await make_acquirer(tmp_path)._wait_for_post_login(page, context)

    @pytest.mark.asyncio
    async def test_post_login_timeout(self, tmp_path):
        """Test PostLoginNotReachedError when the session never appears."""
        clock = FakeClock()
        page = MagicMock()
        page.url = "https://bayan.logisti.sa/login"
        page.evaluate = AsyncMock(return_value="")
        page.query_selector = AsyncMock(return_value=None)
        context = MagicMock()
        context.cookies = AsyncMock(return_value=[])
        acquirer = make_acquirer(
            tmp_path, clock=clock, post_login_timeout_ms=3000, post_login_poll_ms=750
        )

        with pytest.raises(PostLoginNotReachedError):
            await acquirer._wait_for_post_login(page, context)

        assert clock.sleeps == [0.75] * 4

    @pytest.mark.asyncio
    async def test_harvest_builds_bundle(self, tmp_path):
        """Test cookies, storage token and user agent end up in the bundle."""
        page = MagicMock()
        page.evaluate = AsyncMock(
            side_effect=[
                {"localStorage": {"token": "jwt-1"}, "sessionStorage": {}},
                "Mozilla/5.0 (X11; Linux x86_64)",
            ]
        )
        context = MagicMock()
        context.cookies = AsyncMock(return_value=[{"name": "JSESSIONID", "value": "abc"}])

        bundle = await make_acquirer(tmp_path)._harvest(page, context, "captured")

        assert bundle.access_token == "jwt-1"
        assert bundle.headers["Cookie"] == "JSESSIONID=abc"
        assert bundle.headers["User-Agent"] == "Mozilla/5.0 (X11; Linux x86_64)"
        assert bundle.headers["Referer"] == "https://bayan.logisti.sa/"
        assert bundle.headers["Origin"] == "https://bayan.logisti.sa"
