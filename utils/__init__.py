"""Utility modules for the rules engine."""
from utils.logger import setup_logging
from utils.formatters import format_ms, format_pct, format_p_value, format_timestamp, time_ago, truncate
from utils.rate_limiter import RateLimiter
from utils.http_client import HTTPClient, APIError
