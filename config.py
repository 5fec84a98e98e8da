#!/usr/bin/env python3
"""
Jira Worklog Import - Configuration

Settings are read from a .env file (see .env.example) or the environment.
Command line options in import_worklogs.py override the import defaults below.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def env_value(key, default=None):
    """Read an environment variable, supporting boolean, empty and null values."""
    value = os.getenv(key)

    if value is None:
        return default

    lowered = value.lower()
    if lowered in ("true", "(true)"):
        return True
    if lowered in ("false", "(false)"):
        return False
    if lowered in ("empty", "(empty)"):
        return ""
    if lowered in ("null", "(null)"):
        return None

    if len(value) > 1 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]

    return value


def env_flag(key, default=False):
    """Read an environment variable as a boolean flag."""
    value = env_value(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "yes", "on")
    return bool(value)


def load_config():
    """Build the configuration dictionary from the current environment."""
    return {
        # Jira instance, e.g. https://<SUBDOMAIN>.atlassian.net
        "jira_host": env_value("JIRA_HOST") or "",
        "jira_user": env_value("JIRA_USER") or "",
        # API token for Jira Cloud, password for Jira Server
        "jira_pass": env_value("JIRA_PASS") or "",
        "request_timeout": float(env_value("REQUEST_TIMEOUT") or 30),
        "date_format": env_value("DATE_FORMAT") or DEFAULT_DATE_FORMAT,
        "date_timezone": env_value("DATE_TIMEZONE") or DEFAULT_TIMEZONE,
        "csv_delimiter": env_value("CSV_DELIMITER") or ",",
        "offset": int(env_value("OFFSET") or 1),
        "limit": int(env_value("LIMIT") or 1000),
        "debug": env_flag("DEBUG"),
        "log_file": env_value("LOG_FILE") or DEFAULT_LOG_FILE,
    }


# ISO-8601 with offset, e.g. 2024-03-01T09:15:00-05:00
DEFAULT_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Default timezone for interpreting timestamps without an offset
DEFAULT_TIMEZONE = "America/Bogota"

DEFAULT_LOG_FILE = os.path.join("files", "jira-worklog-import.log")

# Zero-based column indices in delimited exports
CSV_COLUMNS = {
    "marker": 1,
    "comment": 5,
    "date": 7,
    "duration": 11,
    "issue_key": 12,
}

# Delimited exports carry a date only; worklogs start at this time of day
CSV_DEFAULT_TIME = "12:00:00"

CONFIG = load_config()

# Configuration Instructions:
#
# 1. Copy .env.example to .env and fill in JIRA_HOST, JIRA_USER and JIRA_PASS.
#
# 2. Set DATE_FORMAT to match the timestamps in your export. It uses Python
#    strptime directives, e.g. "%Y-%m-%d %H:%M:%S" or "%d/%m/%Y %H:%M:%S".
#
# 3. Set DATE_TIMEZONE to the timezone the export was recorded in. A wrong
#    timezone can move worklogs near midnight onto a different day.
#
# 4. Test Configuration:
#    - Run: python check_api.py
#    - Verify connection and permissions
