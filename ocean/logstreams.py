import json
import logging
import sys


class ContextFormatter(logging.Formatter):
    """Append the optional context dict of a log call to the message.

    Log calls pass their context as the sole positional argument, eg
    `logit.error("cannot create http client", {"reason": "foo"})`.
    """

    def format(self, record: logging.LogRecord) -> str:
        msg = super().format(record)
        if isinstance(record.args, dict) and record.args:
            msg += " " + json.dumps(record.args, default=str, sort_keys=True)
        return msg


def setup(level: str = "INFO"):
    """Send the log messages of all `ocean` modules to stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ContextFormatter("%(asctime)s %(levelname)s %(module)s: %(message)s")
    )

    logger = logging.getLogger("ocean")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.upper())
