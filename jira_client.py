#!/usr/bin/env python3
"""
Jira REST API client for worklog submission.
"""

import logging

import requests
from requests.auth import HTTPBasicAuth

from worklog_parser import SubmissionFailure

logger = logging.getLogger(__name__)

JIRA_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S.000%z"


def format_jira_datetime(started):
    """Format an aware datetime the way the Jira worklog API expects it."""
    return started.strftime(JIRA_DATETIME_FORMAT)


class JiraWorklogClient:
    """Handles worklog operations against the Jira REST API."""

    def __init__(self, base_url, user, api_token, timeout=30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self._setup_authentication(user, api_token)

    def _setup_authentication(self, user, api_token):
        """Setup basic authentication with the user's API token."""
        self.session.auth = HTTPBasicAuth(user, api_token)
        self.session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )

    def get_current_user(self):
        """Retrieve the authenticated user, or None if the request fails."""
        url = f"{self.base_url}/rest/api/2/myself"

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            print(f"Error fetching current user info: {e}")
            return None

    def get_issue(self, issue_key):
        """Retrieve an issue's key and summary, or None if it is not visible."""
        url = f"{self.base_url}/rest/api/2/issue/{issue_key}"

        try:
            response = self.session.get(
                url, params={"fields": "summary"}, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            print(f"Error fetching issue {issue_key}: {e}")
            return None

    def can_log_work(self, issue_key):
        """Check whether the current user may add worklogs to an issue."""
        url = f"{self.base_url}/rest/api/2/mypermissions"
        params = {"issueKey": issue_key, "permissions": "WORK_ON_ISSUES"}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            permissions = response.json().get("permissions", {})
            return bool(permissions.get("WORK_ON_ISSUES", {}).get("havePermission"))
        except requests.exceptions.RequestException as e:
            print(f"Error checking worklog permission on {issue_key}: {e}")
            return False

    def add_worklog(self, issue_key, comment, started, time_spent):
        """Create a worklog on an issue and return the new worklog id.

        time_spent uses Jira duration notation, e.g. "1.5h". Raises
        SubmissionFailure when Jira cannot be reached or rejects the worklog.
        """
        url = f"{self.base_url}/rest/api/2/issue/{issue_key}/worklog"

        worklog_data = {
            "comment": comment,
            "started": format_jira_datetime(started),
            "timeSpent": time_spent,
        }
        logger.debug("POST %s %s", url, worklog_data)

        try:
            response = self.session.post(url, json=worklog_data, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise SubmissionFailure(issue_key, str(e)) from e

        if not response.ok:
            raise SubmissionFailure(
                issue_key, self._error_message(response), response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SubmissionFailure(
                issue_key, "response is not valid JSON", response.status_code
            ) from e

        logger.debug("Jira response: %s", data)

        worklog_id = data.get("id") if isinstance(data, dict) else None
        if not worklog_id:
            raise SubmissionFailure(
                issue_key, "response has no worklog id", response.status_code
            )
        return str(worklog_id)

    def _error_message(self, response):
        """Collect Jira's error messages from a failed response."""
        try:
            error_data = response.json()
        except ValueError:
            error_data = None

        messages = []
        if isinstance(error_data, dict):
            messages.extend(error_data.get("errorMessages") or [])
            for field_name, message in (error_data.get("errors") or {}).items():
                messages.append(f"{field_name}: {message}")

        if not messages:
            messages.append(response.text[:200] or response.reason or "unknown error")

        return f"HTTP {response.status_code}: {'; '.join(messages)}"

    def close(self):
        self.session.close()
