#!/usr/bin/env python3
"""
Jira Worklog Import Script

Imports time-tracking exports (JSON or CSV) into Jira worklogs. Every input
record is validated first; records without an issue key, comment, duration or
valid start date are logged as rejected and never sent to Jira.

Jira credentials are read from a .env file:
    JIRA_HOST="https://<SUBDOMAIN>.atlassian.net"
    JIRA_USER=""
    JIRA_PASS=""
"""

import argparse
import logging
import os
import sys
from datetime import datetime

from config import CONFIG
from jira_client import JiraWorklogClient
from worklog_parser import (
    STATUS_DRY_RUN,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUS_SUBMITTED,
    InputFileError,
    SubmissionFailure,
    WorklogImportError,
    WorkLogParser,
    normalize_record,
    rejected_record,
)

logger = logging.getLogger(__name__)


class RunLog:
    """Prints run output and appends it to the run log file."""

    def __init__(self, log_file):
        self.log_file = log_file
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def write(self, text=""):
        print(text)
        with open(self.log_file, "a", encoding="utf-8") as file:
            file.write(text + "\n")

    def log_record(self, record):
        self.write(record.as_log_line())


def parse_args(argv=None):
    """Parse command-line flags; defaults come from the environment."""
    parser = argparse.ArgumentParser(description="Import time logs into Jira worklogs")
    parser.add_argument("filename", help="The JSON or CSV file to import from")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and log every record without submitting worklogs to Jira",
    )
    parser.add_argument(
        "--date-format",
        default=CONFIG["date_format"],
        help="strptime format of the start dates (default: DATE_FORMAT)",
    )
    parser.add_argument(
        "--date-timezone",
        default=CONFIG["date_timezone"],
        help="Timezone the start dates were recorded in (default: %(default)s)",
    )
    parser.add_argument(
        "--csv-delimiter",
        default=None,
        help="CSV delimiter (default: tab for .tsv files, otherwise CSV_DELIMITER)",
    )
    parser.add_argument(
        "--offset",
        type=int,
        default=CONFIG["offset"],
        help="Number of CSV rows to skip (default: %(default)s)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=CONFIG["limit"],
        help="Number of CSV rows to import (default: %(default)s)",
    )
    parser.add_argument(
        "--log-file",
        default=CONFIG["log_file"],
        help="Run log file, appended to on every run (default: %(default)s)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=CONFIG["debug"],
        help="Print raw records and API responses",
    )
    return parser.parse_args(argv)


def resolve_delimiter(file_path, delimiter):
    """Pick the CSV delimiter; a literal "\\t" means tab."""
    if delimiter is None:
        if file_path.lower().endswith(".tsv"):
            return "\t"
        delimiter = CONFIG["csv_delimiter"]
    if delimiter == "\\t":
        return "\t"
    return delimiter


def submit_record(record, client, dry_run):
    """Send a validated record to Jira, unless it is rejected or this is a dry run."""
    if record.status != STATUS_PENDING:
        return record

    if dry_run:
        return record.with_status(STATUS_DRY_RUN, "dry-run")

    entry = record.to_worklog()
    try:
        worklog_id = client.add_worklog(
            entry.issue_key, entry.comment, entry.started, entry.time_spent
        )
    except SubmissionFailure as e:
        logger.debug("Submission of line %s failed", record.line, exc_info=True)
        return record.with_status(STATUS_REJECTED, f"api error: {e}")

    return record.with_status(STATUS_SUBMITTED, f"logged ({worklog_id})")


def run_import(parser, file_path, client, run_log, date_format, timezone, dry_run=False):
    """Process every record of the input file and return counts per status."""
    counts = {STATUS_SUBMITTED: 0, STATUS_DRY_RUN: 0, STATUS_REJECTED: 0}

    for line, row in parser.iter_rows(file_path):
        logger.debug("Line %s: %r", line, row)

        try:
            raw = parser.to_raw_record(row)
            record = normalize_record(raw, line, date_format, timezone)
        except WorklogImportError as e:
            record = rejected_record(line, str(e))

        record = submit_record(record, client, dry_run)
        logger.debug("Line %s: %r", line, record)

        run_log.log_record(record)
        counts[record.status] = counts.get(record.status, 0) + 1

    return counts


def write_banner(run_log, file_path, endpoint):
    run_log.write("")
    run_log.write("=" * 80)
    run_log.write(" Jira Worklog Import")
    run_log.write(f" Input: {os.path.abspath(file_path)}")
    run_log.write(f" Endpoint: {endpoint or '(not configured)'}")
    run_log.write(f" Date: {datetime.now().astimezone().isoformat(timespec='seconds')}")
    run_log.write("=" * 80)


def write_summary(run_log, counts):
    summary = ", ".join(f"{count} {status}" for status, count in counts.items())
    run_log.write("=" * 80)
    run_log.write(f"SUMMARY: {summary}")
    run_log.write("=" * 80)


def main(argv=None):
    """Main execution function."""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    run_log = RunLog(args.log_file)
    write_banner(run_log, args.filename, CONFIG["jira_host"])

    client = None
    if not args.dry_run:
        if not (CONFIG["jira_host"] and CONFIG["jira_user"] and CONFIG["jira_pass"]):
            run_log.write("Error: JIRA_HOST, JIRA_USER and JIRA_PASS must be set in .env")
            return 1
        client = JiraWorklogClient(
            CONFIG["jira_host"],
            CONFIG["jira_user"],
            CONFIG["jira_pass"],
            timeout=CONFIG["request_timeout"],
        )

    try:
        parser = WorkLogParser(
            csv_delimiter=resolve_delimiter(args.filename, args.csv_delimiter),
            offset=args.offset,
            limit=args.limit,
        )
        counts = run_import(
            parser,
            args.filename,
            client,
            run_log,
            args.date_format,
            args.date_timezone,
            dry_run=args.dry_run,
        )
    except InputFileError as e:
        run_log.write(f"Error: {e}")
        return 1
    finally:
        if client is not None:
            client.close()

    write_summary(run_log, counts)
    return 0


if __name__ == "__main__":
    sys.exit(main())
