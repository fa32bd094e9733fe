from __future__ import annotations

import logging

from selenium import webdriver
from selenium.webdriver import ChromeOptions, FirefoxOptions

from variation_engine.config.schema import BrowserSettings

logger = logging.getLogger(__name__)


class BrowserSession:
    """Creates browser instances using Selenium Manager."""

    def __init__(self, settings: BrowserSettings | None = None) -> None:
        self.settings = settings or BrowserSettings()

    def start(self, browser_name: str | None = None):
        normalized = (browser_name or self.settings.name).lower()
        width, height = self.settings.window_size
        if normalized == "chrome":
            options = ChromeOptions()
            if self.settings.headless:
                options.add_argument("--headless=new")
            options.add_argument(f"--window-size={width},{height}")
            driver = webdriver.Chrome(options=options)
        elif normalized == "firefox":
            options = FirefoxOptions()
            if self.settings.headless:
                options.add_argument("-headless")
            driver = webdriver.Firefox(options=options)
            driver.set_window_size(width, height)
        else:
            raise ValueError(f"Unsupported browser: {browser_name}")
        driver.set_page_load_timeout(self.settings.page_load_timeout_seconds)
        driver.implicitly_wait(0)
        logger.info("Started %s (headless=%s)", normalized, self.settings.headless)
        return driver
