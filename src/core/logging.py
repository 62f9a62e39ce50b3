"""Process-wide logfire setup.

Entry points (the API lifespan and the CLI) call ``configure_logging`` once;
library code only ever calls ``logfire.info`` / ``logfire.span`` directly.
"""

import sys
import threading

import logfire

_configured = False
_config_lock = threading.Lock()


def configure_logging(enable_console: bool = False) -> None:
    """Configure logfire on first call; later calls are no-ops.

    Args:
        enable_console: Mirror log records to the console.
    """
    global _configured

    if _configured:
        return

    with _config_lock:
        if _configured:
            return
        try:
            console = logfire.ConsoleOptions() if enable_console else False
            logfire.configure(send_to_logfire="if-token-present", console=console)
            _configured = True
        except Exception as e:
            # logfire itself is unavailable here, so stderr is the only channel
            print(f"Failed to configure logfire: {e}", file=sys.stderr)


def is_configured() -> bool:
    return _configured
