"""Common utilities shared by the media QA harness."""

from common.errors import HarnessError
from common.http_client import ControlClient
from common.logging import setup_logging

__all__ = ["ControlClient", "HarnessError", "setup_logging"]
