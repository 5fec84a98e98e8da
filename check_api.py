#!/usr/bin/env python3
"""
Jira API Connectivity Check

This script tests the connection to your Jira instance and validates the
credentials in .env. Pass an issue key to also check that you can log work
on it:

    python check_api.py BSP-9
"""

import argparse
import sys

from config import CONFIG
from jira_client import JiraWorklogClient


def check_configuration(config):
    """Report missing Jira settings."""
    print("\n⚙️  Checking Configuration...")

    missing = [
        name
        for name, key in (
            ("JIRA_HOST", "jira_host"),
            ("JIRA_USER", "jira_user"),
            ("JIRA_PASS", "jira_pass"),
        )
        if not config.get(key)
    ]

    if missing:
        print(f"❌ Missing settings: {', '.join(missing)}")
        return False

    print(f"✅ Jira host: {config['jira_host']}")
    print(f"   Date format: {config['date_format']}")
    print(f"   Timezone: {config['date_timezone']}")
    return True


def check_api_connection(client):
    """Test basic API connectivity and authentication."""
    print("\n🔗 Testing Jira API Connection...")
    print(f"\nBase URL: {client.base_url}")

    user_data = client.get_current_user()
    if not user_data:
        print("❌ Authentication Failed!")
        return False

    print("\n✅ API Connection Successful!")
    print(f"   Authenticated as: {user_data.get('displayName', 'Unknown')}")
    print(f"   Email: {user_data.get('emailAddress', 'Unknown')}")
    print(f"   Timezone: {user_data.get('timeZone', 'Unknown')}")

    if user_data.get("timeZone") and user_data["timeZone"] != CONFIG["date_timezone"]:
        print(
            f"⚠️  Jira profile timezone differs from DATE_TIMEZONE "
            f"({CONFIG['date_timezone']}); check worklogs near midnight"
        )
    return True


def check_issue_access(client, issue_key):
    """Test that an issue is visible and accepts worklogs."""
    print(f"\n📋 Testing Worklog Permissions on {issue_key}...")

    issue = client.get_issue(issue_key)
    if not issue:
        print(f"❌ {issue_key} - Issue not found or access denied")
        return False

    summary = issue.get("fields", {}).get("summary", "Unknown")
    print(f"✅ {issue_key} - {summary}")

    if not client.can_log_work(issue_key):
        print(f"❌ Logging work on {issue_key} is not allowed")
        return False

    print(f"✅ Logging work on {issue_key} is allowed")
    return True


def main(argv=None):
    """Run all API checks."""
    parser = argparse.ArgumentParser(description="Check the Jira API configuration")
    parser.add_argument("issue_key", nargs="?", help="Issue key to check, e.g. BSP-9")
    args = parser.parse_args(argv)

    print("\n🚀 Jira API Configuration Check")
    print("=" * 50)

    if not check_configuration(CONFIG):
        print("\nTroubleshooting:")
        print("1. Copy .env.example to .env")
        print("2. Fill in JIRA_HOST, JIRA_USER and JIRA_PASS")
        return 1

    client = JiraWorklogClient(
        CONFIG["jira_host"],
        CONFIG["jira_user"],
        CONFIG["jira_pass"],
        timeout=10,
    )

    try:
        if not check_api_connection(client):
            print("\n❌ Cannot proceed - API connection failed")
            print("\nTroubleshooting:")
            print("1. Check JIRA_HOST in .env")
            print("2. Verify JIRA_USER and JIRA_PASS (API token) are correct")
            print("3. Ensure you have internet connectivity")
            return 1

        if args.issue_key and not check_issue_access(client, args.issue_key):
            return 1
    finally:
        client.close()

    print("\n🎉 API check completed!")
    print("You can now run: python import_worklogs.py <file>")
    return 0


if __name__ == "__main__":
    sys.exit(main())
