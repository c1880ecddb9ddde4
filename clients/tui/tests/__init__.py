"""Tests for the reechat client."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
