"""
Stream ticker hook: rate-limited feedback while a reply streams.

A stand-in for device feedback (haptics, sounds): logs a tick at most every
0.12s, emphasising sentence endings, plus one line per turn outcome.

Enable in config.yaml:
  hooks:
    directory: ./hooks
"""

import logging

from aidedecamp.hooks import TickThrottle

logger = logging.getLogger("aidedecamp.hooks.stream_ticker")

_throttle = TickThrottle(min_interval=0.12)


def on_stream_started(context):
    logger.debug("stream began (%s)", context.get("message_id"))


def on_tick(context):
    if not _throttle.ready():
        return
    text = context.get("text", "").rstrip()
    strong = bool(text) and text[-1] in ".!?;:"
    logger.debug("tick%s (%d chars)", " [strong]" if strong else "", len(text))


def on_success(context):
    logger.debug("stream ended: success")


def on_error(context):
    logger.debug("stream ended: error (%s)", context.get("error"))
