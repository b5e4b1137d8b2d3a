from __future__ import annotations

from pathlib import Path
from typing import Any

from playwright.async_api import Browser

from invoice_downloader.config import Config
from invoice_downloader.json_logger import JsonLogger, log_event

PHASE = "init"
VIEWPORT = {"width": 1280, "height": 800}


async def launch_browser(*, playwright: Any, config: Config, logger: JsonLogger) -> Browser:
    """Start Chromium for the invoice session.

    A configured Chrome binary is used only if it exists on disk; otherwise
    Playwright's bundled Chromium is launched.
    """

    options: dict[str, Any] = {"headless": config.headless}
    executable = config.chrome_executable
    if executable and Path(executable).is_file():
        options["executable_path"] = executable
    elif executable:
        log_event(
            logger=logger,
            phase=PHASE,
            status="warn",
            message="Chrome executable not found; using bundled Chromium",
            executable_path=executable,
        )

    browser = await playwright.chromium.launch(**options)
    log_event(
        logger=logger,
        phase=PHASE,
        message="Chromium started",
        headless=config.headless,
        executable_path=options.get("executable_path"),
    )
    return browser
