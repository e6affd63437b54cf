"""Trakt integration."""

from .client import TraktClient, poll_device_token, request_device_code

__all__ = ["TraktClient", "request_device_code", "poll_device_token"]
