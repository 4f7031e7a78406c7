"""Best-effort debug artifacts captured when the watcher restarts.

Nothing in here may raise: a failed screenshot must never hide the error that
triggered the dump.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from avito_watcher.utils.files import atomic_write_text, write_json_atomic
from avito_watcher.utils.timestamps import format_filename_timestamp, now_iso

logger = logging.getLogger(__name__)


async def dump_debug_artifacts(
    page: Any,
    debug_dir: str | Path,
    tag: str,
    details: dict[str, Any] | None = None,
) -> list[Path]:
    """Save a full-page screenshot, the page HTML and a JSON state dump.

    Files are named ``<timestamp>.<tag>.png|html|json`` inside ``debug_dir``.

    Args:
        page: Playwright page, or None when no page exists yet.
        debug_dir: Directory for the artifacts.
        tag: Short label such as ``"error"``.
        details: Extra structured data (error, supervisor state, ...).

    Returns:
        Paths of the artifacts that were actually written.
    """
    directory = Path(debug_dir)
    stem = f"{format_filename_timestamp()}.{tag}"
    written: list[Path] = []

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError:
        logger.warning("Cannot create debug directory %s", directory, exc_info=True)
        return written

    dump: dict[str, Any] = {"tag": tag, "capturedAt": now_iso(), **(details or {})}

    if page is not None:
        try:
            if not page.is_closed():
                dump["url"] = page.url
                png_path = directory / f"{stem}.png"
                await page.screenshot(path=str(png_path), full_page=True)
                written.append(png_path)
        except Exception as exc:
            logger.debug("Could not save debug screenshot: %s", exc)

        try:
            if not page.is_closed():
                html = await page.content()
                if html:
                    html_path = directory / f"{stem}.html"
                    atomic_write_text(html_path, html)
                    written.append(html_path)
        except Exception as exc:
            logger.debug("Could not save page HTML: %s", exc)

    try:
        json_path = directory / f"{stem}.json"
        write_json_atomic(json_path, dump)
        written.append(json_path)
    except (OSError, TypeError, ValueError) as exc:
        logger.debug("Could not save debug JSON: %s", exc)

    if written:
        logger.info("Debug artifacts saved: %s", ", ".join(p.name for p in written))
    return written
