"""
Configuration Management

Simple utility for loading and validating environment configuration.
"""

import os
from datetime import time
from typing import Optional, Tuple
from dotenv import load_dotenv


def load_config(env_path: Optional[str] = None) -> bool:
    """
    Load environment configuration from .env file.

    Args:
        env_path: Optional path to .env file. If None, searches in current directory.

    Returns:
        bool: True if .env file was found and loaded, False otherwise
    """
    if env_path:
        return load_dotenv(env_path)
    return load_dotenv()


def get_database_config() -> dict:
    """
    Get configuration for the calendar database.

    Returns:
        dict: Database configuration

    Raises:
        ValueError: If required configuration is missing
    """
    config = {
        "host": os.getenv("CALENDARDB_HOST"),
        "port": os.getenv("CALENDARDB_PORT", "5432"),
        "database": os.getenv("CALENDARDB_NAME"),
        "user": os.getenv("CALENDARDB_USER"),
        "password": os.getenv("CALENDARDB_PASS"),
    }

    # Validate
    missing = [k for k, v in config.items() if not v]
    if missing:
        raise ValueError(
            f"Missing calendar database configuration: {missing}. "
            f"Please check your .env file."
        )

    return config


def get_pool_config() -> dict:
    """Connection pool sizing for the calendar database."""
    min_connections = int(os.getenv("CALENDARDB_POOL_MIN", "1"))
    max_connections = int(os.getenv("CALENDARDB_POOL_MAX", "5"))
    if min_connections < 1 or max_connections < min_connections:
        raise ValueError(
            f"Invalid pool size: min={min_connections}, max={max_connections}"
        )
    return {"min_connections": min_connections, "max_connections": max_connections}


def parse_time_of_day(value: str) -> time:
    """
    Parse an "HH:MM" string into a time object.

    Raises:
        ValueError: If the string is not a valid time of day
    """
    try:
        hour, minute = value.strip().split(":")
        return time(int(hour), int(minute))
    except (AttributeError, TypeError, ValueError) as e:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)") from e


def parse_weekdays(value: str) -> Tuple[int, ...]:
    """
    Parse a comma separated list of ISO weekdays ("1,2,3,4,5").

    Raises:
        ValueError: If any entry is not in 1..7
    """
    days = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        day = int(part)
        if day < 1 or day > 7:
            raise ValueError(f"Weekday must be in range 1..7, got {day}")
        days.append(day)
    return tuple(sorted(set(days)))


def get_app_config() -> dict:
    """
    Get application configuration settings.

    Returns:
        dict: Application settings
    """
    return {
        "timezone": os.getenv("TIMEZONE", "Europe/Istanbul"),
        "refresh_interval_seconds": int(os.getenv("REFRESH_INTERVAL_SECONDS", "60")),
        "sync_min_interval_seconds": int(os.getenv("SYNC_MIN_INTERVAL_SECONDS", "30")),
        "next_operation_lookahead_hours": float(os.getenv("NEXT_OPERATION_LOOKAHEAD_HOURS", "2")),
        "dependency_min_gap_minutes": int(os.getenv("DEPENDENCY_MIN_GAP_MINUTES", "0")),
        "default_view": os.getenv("DEFAULT_VIEW", "week"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
    }


def get_working_hours_defaults() -> dict:
    """
    Default working-hours calendar applied to machines that do not declare one.

    08:00-17:00 with a 60 minute break gives the standard 8h day / 40h week.
    """
    return {
        "start": parse_time_of_day(os.getenv("DEFAULT_WORKING_START", "08:00")),
        "end": parse_time_of_day(os.getenv("DEFAULT_WORKING_END", "17:00")),
        "working_days": parse_weekdays(os.getenv("DEFAULT_WORKING_DAYS", "1,2,3,4,5")),
        "break_minutes": int(os.getenv("DEFAULT_BREAK_MINUTES", "60")),
    }


def validate_config() -> list:
    """
    Validate all required configuration is present.

    Returns:
        list: List of missing configuration items (empty if all valid)
    """
    missing = []

    try:
        get_database_config()
    except ValueError as e:
        missing.append(f"CALENDARDB: {str(e)}")

    try:
        get_pool_config()
    except ValueError as e:
        missing.append(f"CALENDARDB POOL: {str(e)}")

    try:
        get_working_hours_defaults()
    except ValueError as e:
        missing.append(f"WORKING HOURS: {str(e)}")

    return missing
