"""Tencent Meeting REST API integration."""

from src.app.services.tencent.client import TencentApiError, TencentMeetingClient

__all__ = ["TencentApiError", "TencentMeetingClient"]
