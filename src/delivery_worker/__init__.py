"""Celery worker running scheduled sends, retries and expiry sweeps."""
