"""Fire-and-forget desktop notifications (terminal-notifier on macOS, notify-send elsewhere)."""

import logging
import shutil
import subprocess

logger = logging.getLogger(__name__)

_TITLE = "Ask Many Models"


def notify(title: str, message: str, subtitle: str | None = None, open_path: str | None = None) -> bool:
    """Send a desktop notification. Returns False when none could be shown."""
    if shutil.which("terminal-notifier"):
        args = ["terminal-notifier", "-title", title, "-message", message, "-sound", "default",
                "-group", "ask-many-models"]
        if subtitle:
            args += ["-subtitle", subtitle]
        if open_path:
            args += ["-open", open_path]
    elif shutil.which("notify-send"):
        body = f"{subtitle}: {message}" if subtitle else message
        args = ["notify-send", title, body]
    else:
        logger.debug("No notification tool installed (terminal-notifier or notify-send)")
        return False

    try:
        subprocess.run(args, check=True, capture_output=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Notification failed: %s", exc)
        return False
    return True


def notify_query_complete(model_count: int, success_count: int, output_path: str | None = None) -> bool:
    status = (
        "All models responded"
        if success_count == model_count
        else f"{success_count}/{model_count} models responded"
    )
    return notify(_TITLE, status, subtitle="Query complete", open_path=output_path)
