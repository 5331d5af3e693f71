"""Utility modules for GridWatch."""
from utils.logger import setup_logging
from utils.formatters import format_pct, format_minutes, format_timestamp, time_ago
from utils.rate_limiter import RateLimiter
from utils.http_client import HTTPClient, APIError
