"""
Transport module - event channel, REST client and health probing.
"""

from .api_client import APIClient, extract_error_message
from .health import HealthMonitor
from .session import TransportSession

__all__ = ["APIClient", "HealthMonitor", "TransportSession", "extract_error_message"]
