"""Playwright-driven login to the carrier portal."""

import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from loguru import logger
from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    Request,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from ...core.clock import SYSTEM_CLOCK, Clock
from ...core.exceptions import BrowserLaunchError, LoginFlowError, PostLoginNotReachedError
from ..otp.resolver import OtpResolver
from ..session.acquirer import LoginCredentials, SessionAcquirer
from ..session.bundle import build_bundle
from ..session.models import CredentialBundle
from .executable import find_browser_executable
from .page_checks import raise_if_server_error

PORTAL_SELECTORS = {
    "app_root": "app-root",
    "landing_card": ".card",
    "first_card": ".column:first-child .card",
    "username": "#Username",
    "password": "#password",
    "policy": "#Policy",
    "login_button": 'button[type="submit"][value="login"]',
    "otp_field": "#TwoFactorCode{index}",
    "verify_button": 'button.verify-code[type="submit"]',
    "dashboard": ".sidebar-menu",
}

LOCAL_CARRIER_TITLE = "Local Carrier"
OTP_FIELD_COUNT = 4
SESSION_COOKIES = frozenset({"JSESSIONID", "TS01f96da1", "lang"})

LAUNCH_ARGS = [
    "--no-first-run",
    "--no-zygote",
    "--disable-blink-features=AutomationControlled",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--disable-software-rasterizer",
    "--disable-extensions",
]
LINUX_SANDBOX_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

_CLICK_LOCAL_CARRIER_JS = """
(title) => {
    const titles = Array.from(document.querySelectorAll('h4.card-title'));
    const match = titles.find((el) => el.textContent.trim() === title);
    const card = match ? match.closest('.card') : null;
    if (card) {
        card.click();
        return true;
    }
    return false;
}
"""

_VERIFY_ENABLED_JS = """
() => {
    const btn = document.querySelector('button.verify-code');
    return !!btn && !btn.disabled;
}
"""

_READ_STORAGE_JS = """
() => {
    const read = (storage) => {
        const out = {};
        try {
            for (let i = 0; i < storage.length; i++) {
                const key = storage.key(i);
                out[key] = storage.getItem(key);
            }
        } catch (e) {}
        return out;
    };
    return { localStorage: read(window.localStorage), sessionStorage: read(window.sessionStorage) };
}
"""


def is_login_url(url: str) -> bool:
    """Whether the URL still points at the login or OTP screens."""
    return "/login" in url or ("#" in url and "login" in url.lower())


def is_post_login(url: str, cookie_names: Iterable[str], has_dashboard: bool) -> bool:
    """Dashboard rendered, or a session cookie is set while off the login URL."""
    if has_dashboard:
        return True
    return bool(SESSION_COOKIES.intersection(cookie_names)) and not is_login_url(url)


def launch_args(platform: str) -> List[str]:
    """Browser flags; the sandbox is disabled on Linux hosts."""
    args = list(LAUNCH_ARGS)
    if platform.startswith("linux"):
        args.extend(LINUX_SANDBOX_ARGS)
    return args


class PlaywrightPortalAcquirer(SessionAcquirer):
    """
    Logs in to the portal in a fresh browser and harvests the session.

    Every run launches its own browser and context, so nothing leaks between
    attempts. The portal's generic server-error page is checked after every
    navigation step and aborts the attempt with a screenshot.
    """

    def __init__(
        self,
        portal_url: str,
        portal_origin: str,
        executable_path: Optional[str] = None,
        headless: bool = True,
        screenshots_dir: Union[str, Path] = "screenshots/errors",
        otp_wait_ms: int = 10000,
        post_login_timeout_ms: int = 60000,
        post_login_poll_ms: int = 750,
        clock: Clock = SYSTEM_CLOCK,
        platform: Optional[str] = None,
    ):
        """
        Initialize portal acquirer.

        Args:
            portal_url: Landing page; also sent as Referer downstream
            portal_origin: Origin header sent downstream
            executable_path: Explicit browser executable override
            headless: Run the browser headless
            screenshots_dir: Directory for diagnostic screenshots
            otp_wait_ms: Delay between the OTP page appearing and the first mailbox poll
            post_login_timeout_ms: How long to wait for the session after OTP submit
            post_login_poll_ms: Interval of the post-login checks
            clock: Clock used for delays
            platform: ``sys.platform`` override
        """
        self.portal_url = portal_url
        self.portal_origin = portal_origin
        self.executable_path = executable_path
        self.headless = headless
        self.screenshots_dir = Path(screenshots_dir)
        self.otp_wait_ms = otp_wait_ms
        self.post_login_timeout_ms = post_login_timeout_ms
        self.post_login_poll_ms = post_login_poll_ms
        self.clock = clock
        self.platform = platform or sys.platform

    async def run(
        self, credentials: LoginCredentials, otp_resolver: OtpResolver
    ) -> CredentialBundle:
        """
        Run one complete login.

        Raises:
            BrowserNotFoundError: If no supported browser is installed
            BrowserLaunchError: If the browser cannot be started
            UpstreamUnavailableError: If the portal shows its server-error page
            OTPError: If the OTP cannot be obtained
            PostLoginNotReachedError: If the session never materializes
            LoginFlowError: If any other browser step fails
        """
        executable = find_browser_executable(self.executable_path, platform=self.platform)
        logger.info(f"Browser executable: {executable} (headless={self.headless})")

        async with async_playwright() as playwright:
            browser = await self._launch(playwright, executable)
            try:
                context = await self._new_context(browser)
                try:
                    return await self._login(context, credentials, otp_resolver)
                finally:
                    await self._close_quietly(context)
            finally:
                await self._close_quietly(browser)

    async def _launch(self, playwright: Playwright, executable: str) -> Browser:
        try:
            browser = await playwright.chromium.launch(
                executable_path=executable,
                headless=self.headless,
                args=launch_args(self.platform),
                timeout=60000,
            )
        except PlaywrightError as e:
            logger.error(f"Browser launch failed: {e}")
            raise BrowserLaunchError(str(e)) from e
        logger.info("Browser launched successfully")
        return browser

    async def _new_context(self, browser: Browser) -> BrowserContext:
        user_agent = None
        try:
            ua_page = await browser.new_page()
            try:
                user_agent = await ua_page.evaluate("() => navigator.userAgent")
            finally:
                await ua_page.close()
        except PlaywrightError as e:
            logger.debug(f"Could not read browser user agent: {e}")

        options: Dict[str, Any] = {"ignore_https_errors": True, "no_viewport": True}
        if user_agent:
            # Headless builds advertise "HeadlessChrome"
            options["user_agent"] = user_agent.replace("HeadlessChrome", "Chrome")
        return await browser.new_context(**options)

    async def _login(
        self,
        context: BrowserContext,
        credentials: LoginCredentials,
        otp_resolver: OtpResolver,
    ) -> CredentialBundle:
        page = await context.new_page()
        bearer: Dict[str, str] = {}

        def on_request(request: Request) -> None:
            auth = request.headers.get("authorization", "")
            if auth.lower().startswith("bearer "):
                bearer["token"] = auth[len("bearer ") :].strip()

        page.on("request", on_request)

        step = "navigate"
        try:
            logger.info(f"Navigating to {self.portal_url}")
            await page.goto(self.portal_url, wait_until="networkidle", timeout=30000)
            await page.wait_for_selector(PORTAL_SELECTORS["app_root"], timeout=15000)
            await self._check(page, "landing")

            step = "landing"
            await self.clock.sleep(1.5)
            await page.wait_for_selector(
                PORTAL_SELECTORS["landing_card"], state="visible", timeout=15000
            )
            await self._check(page, "landing cards")
            clicked = await page.evaluate(_CLICK_LOCAL_CARRIER_JS, LOCAL_CARRIER_TITLE)
            if not clicked:
                logger.debug(f"'{LOCAL_CARRIER_TITLE}' card not found, using first card")
                await page.click(PORTAL_SELECTORS["first_card"])
            await self.clock.sleep(2.5)
            await self._check(page, "after local carrier click")

            step = "login form"
            for field in ("username", "password"):
                await page.wait_for_selector(
                    PORTAL_SELECTORS[field], state="visible", timeout=20000
                )
            await self._check(page, "login page")
            await page.type(PORTAL_SELECTORS["username"], credentials.identity_number, delay=80)
            await page.type(PORTAL_SELECTORS["password"], credentials.password, delay=80)
            await page.select_option(PORTAL_SELECTORS["policy"], "Email")
            await self.clock.sleep(0.3)

            step = "submit"
            await otp_resolver.capture_baseline()
            await page.click(PORTAL_SELECTORS["login_button"])
            await page.wait_for_selector(
                PORTAL_SELECTORS["otp_field"].format(index=1), state="visible", timeout=25000
            )
            await self._check(page, "otp page")

            step = "otp"
            logger.info(f"Waiting {self.otp_wait_ms}ms for the OTP email")
            await self.clock.sleep(self.otp_wait_ms / 1000)
            otp = await otp_resolver.resolve()
            logger.info(f"OTP received (length={len(otp)})")
            await self._enter_otp(page, otp)

            step = "post-login"
            await self._wait_for_post_login(page, context)
            await self.clock.sleep(1.5)
            await self._check(page, "after login")

            step = "harvest"
            return await self._harvest(page, context, bearer.get("token"))
        except PlaywrightError as e:
            logger.error(f"Login step '{step}' failed: {e}")
            raise LoginFlowError(f"Login step '{step}' failed: {e}", details={"step": step}) from e

    async def _enter_otp(self, page: Page, otp: str) -> None:
        for index, digit in enumerate(otp[:OTP_FIELD_COUNT], start=1):
            field = PORTAL_SELECTORS["otp_field"].format(index=index)
            await page.click(field)
            await page.fill(field, "")
            await page.type(field, digit, delay=40)
            await self.clock.sleep(0.15)
        await self.clock.sleep(0.3)

        await page.wait_for_function(_VERIFY_ENABLED_JS, timeout=10000)
        await page.click(PORTAL_SELECTORS["verify_button"])

    async def _wait_for_post_login(self, page: Page, context: BrowserContext) -> None:
        """Poll until the dashboard or a session cookie appears."""
        deadline = self.clock.now_ms() + self.post_login_timeout_ms
        while self.clock.now_ms() < deadline:
            await self._check(page, "post-login wait")
            try:
                url = page.url
                cookies = await context.cookies()
                has_dashboard = await page.query_selector(PORTAL_SELECTORS["dashboard"]) is not None
            except PlaywrightError:
                await self.clock.sleep(self.post_login_poll_ms / 1000)
                continue

            names = {cookie.get("name") for cookie in cookies if cookie.get("name")}
            if is_post_login(url, names, has_dashboard):
                logger.info("Post-login state reached")
                return
            await self.clock.sleep(self.post_login_poll_ms / 1000)

        raise PostLoginNotReachedError(self.post_login_timeout_ms / 1000)

    async def _harvest(
        self, page: Page, context: BrowserContext, captured_bearer: Optional[str]
    ) -> CredentialBundle:
        cookies = await context.cookies()

        storage: Dict[str, Any] = {}
        try:
            storage = await page.evaluate(_READ_STORAGE_JS) or {}
        except PlaywrightError as e:
            logger.warning(f"Reading web storage failed, continuing without it: {e}")

        user_agent = ""
        try:
            user_agent = await page.evaluate("() => navigator.userAgent || ''")
        except PlaywrightError as e:
            logger.debug(f"Could not read page user agent: {e}")

        bundle = build_bundle(
            cookies=cookies,
            local_storage=storage.get("localStorage"),
            session_storage=storage.get("sessionStorage"),
            captured_bearer=captured_bearer,
            user_agent=user_agent,
            referer=self.portal_url,
            origin=self.portal_origin,
        )
        logger.info(
            f"Login succeeded: cookies={len(bundle.cookies)}, "
            f"accessToken={'yes' if bundle.access_token else 'no'}"
        )
        return bundle

    async def _check(self, page: Page, where: str) -> None:
        await raise_if_server_error(page, where, self.screenshots_dir)

    @staticmethod
    async def _close_quietly(target: Union[Browser, BrowserContext]) -> None:
        try:
            await target.close()
        except PlaywrightError as e:
            logger.debug(f"Close failed: {e}")
