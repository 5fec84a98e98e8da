#!/usr/bin/env python3
"""
Worklog record parsing and validation.

Turns rows of a time-tracking export (JSON array or delimited table) into
normalized worklog records: the Jira issue key and comment are pulled out of
free-form text, elapsed time is rounded up to the quarter hour, and start
dates are parsed in the configured timezone.
"""

import codecs
import csv
import io
import itertools
import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import CSV_COLUMNS, CSV_DEFAULT_TIME

logger = logging.getLogger(__name__)

ISSUE_KEY_PATTERN = re.compile(r"[A-Z][A-Z0-9]+-\d+")

# Issue key at the start of a comment, e.g. "BSP-9 - Timesheets", "BSP-9: Timesheets"
COMMENT_PREFIX_PATTERN = re.compile(r"^[A-Z][A-Z0-9]+-\d+\s*[-:.]?\s*(.*)", re.DOTALL)

DURATION_PATTERN = re.compile(r"^(\d{1,6}):(\d{1,2}):(\d{1,2})$")

QUARTERS_PER_HOUR = 4
SECONDS_PER_QUARTER = 3600 // QUARTERS_PER_HOUR

# Upper bound on a single worklog, in hours
MAX_HOURS = 10 ** 6

CANONICAL_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

STATUS_PENDING = "pending"
STATUS_REJECTED = "rejected"
STATUS_DRY_RUN = "dry_run"
STATUS_SUBMITTED = "submitted"

STATUS_MARKERS = {
    STATUS_PENDING: "🟠",
    STATUS_REJECTED: "🔴",
    STATUS_DRY_RUN: "🕓",
    STATUS_SUBMITTED: "🟢",
}

PLACEHOLDER = "⭕"
COMMENT_REQUIRED = f"{PLACEHOLDER} A worklog comment is required."

ESCAPED_NEWLINE = "\\n"

BOM_ENCODINGS = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)

JSON_EXTENSIONS = (".json",)
DELIMITED_EXTENSIONS = (".csv", ".tsv", ".txt")


class WorklogImportError(Exception):
    """Base class for worklog import errors."""


class InputFileError(WorklogImportError):
    """The input file is missing, unreadable or not a supported container."""


class ExtractionFailure(WorklogImportError):
    """No issue key or comment could be derived from a record."""


class DurationParseFailure(WorklogImportError):
    """Elapsed time is not in H:MM:SS or decimal-hours form."""

    def __init__(self, raw, diagnostic):
        self.raw = raw
        self.diagnostic = diagnostic
        super().__init__(f"cannot parse duration '{raw}': {diagnostic}")


class DateParseFailure(WorklogImportError):
    """A start date does not match the configured format or timezone."""

    def __init__(self, raw, date_format, diagnostic):
        self.raw = raw
        self.date_format = date_format
        self.diagnostic = diagnostic
        super().__init__(
            f"cannot parse date '{raw}' with format '{date_format}': {diagnostic}"
        )


class SubmissionFailure(WorklogImportError):
    """Jira rejected the worklog or could not be reached."""

    def __init__(self, issue_key, reason, status_code=None):
        self.issue_key = issue_key
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


def extract_issue_key(text):
    """Return the first Jira issue key (e.g. BSP-9) found anywhere in text."""
    if not text:
        return None

    match = ISSUE_KEY_PATTERN.search(text)
    if not match:
        return None
    return match.group(0)


def extract_comment(text):
    """Strip a leading issue key and separator from a comment.

    Supported prefixes::

        BSP-9 - Timesheets
        BSP-9: Timesheets
        BSP-9  :  Timesheets
        BSP-9  Timesheets
        BSP-9. Timesheets

    Text that does not start with an issue key is returned unchanged. The
    remainder may span several lines and may be empty.
    """
    if not text:
        return ""

    match = COMMENT_PREFIX_PATTERN.match(text)
    if not match:
        return text
    return match.group(1)


def first_non_empty(candidates, extractor):
    """Apply extractor to each candidate in order and return the first non-empty result."""
    for candidate in candidates:
        result = extractor(candidate or "")
        if result:
            return result
    return ""


def format_duration(raw):
    """Convert elapsed time to Jira decimal hours rounded up to the quarter hour.

    Accepts "H:MM:SS" text (e.g. "1:27:33" -> "1.5h") or a number of hours
    (e.g. 1.1 -> "1.25h").
    """
    if isinstance(raw, bool):
        raise DurationParseFailure(raw, "expected H:MM:SS or decimal hours")

    if isinstance(raw, (int, float, Decimal)):
        return _format_decimal_hours(raw)

    text = "" if raw is None else str(raw).strip()
    match = DURATION_PATTERN.match(text)
    if not match:
        return _format_decimal_hours(text)

    hours, minutes, seconds = (int(part) for part in match.groups())
    if minutes > 59 or seconds > 59:
        raise DurationParseFailure(raw, "minutes and seconds must be between 0 and 59")

    # Any started quarter counts as a full quarter.
    quarters = -(-(minutes * 60 + seconds) // SECONDS_PER_QUARTER)
    return _hours_string(hours * QUARTERS_PER_HOUR + quarters)


def _format_decimal_hours(raw):
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise DurationParseFailure(raw, "expected H:MM:SS or decimal hours") from None

    if not value.is_finite() or value < 0:
        raise DurationParseFailure(raw, "hours must be a non-negative number")
    if value >= MAX_HOURS:
        raise DurationParseFailure(raw, "hours out of range")

    quarters = (value * QUARTERS_PER_HOUR).to_integral_value(rounding=ROUND_CEILING)
    return _hours_string(int(quarters))


def _hours_string(quarters):
    hours = Decimal(quarters) / QUARTERS_PER_HOUR
    return f"{hours.normalize():f}h"


def parse_timestamp(raw, date_format, timezone):
    """Parse a start date strictly against date_format in the given timezone.

    Naive values are read as wall-clock time in timezone. Values that carry
    their own UTC offset are converted into timezone.
    """
    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise DateParseFailure(raw, date_format, f"unknown timezone '{timezone}' ({e})") from e

    if not isinstance(raw, str):
        raise DateParseFailure(raw, date_format, "expected a date string")

    try:
        parsed = datetime.strptime(raw, date_format)
    except ValueError as e:
        raise DateParseFailure(raw, date_format, str(e)) from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=zone)

    localized = parsed.astimezone(zone)
    if parsed.utcoffset() != localized.utcoffset():
        logger.warning(
            "Date '%s' has offset %s, converted to %s (%s)",
            raw,
            parsed.strftime("%z"),
            timezone,
            localized.isoformat(),
        )
    return localized


def format_timestamp(started):
    """Render a start date as local wall-clock time without the UTC offset."""
    return started.strftime(CANONICAL_TIMESTAMP_FORMAT)


def escape_newlines(text):
    return text.replace("\r\n", "\n").replace("\n", ESCAPED_NEWLINE)


def unescape_newlines(text):
    return text.replace(ESCAPED_NEWLINE, "\n")


@dataclass(frozen=True)
class RawRecord:
    """One row of a time-tracking export, before validation."""

    project: str = ""
    title: str = ""
    notes: str = ""
    duration: object = ""
    start_date: str = ""


@dataclass(frozen=True)
class WorkLogEntry:
    """A validated worklog, ready to be sent to Jira."""

    issue_key: str
    comment: str
    started: datetime
    time_spent: str


@dataclass(frozen=True)
class NormalizedRecord:
    """Outcome of processing one input record; also the run log line."""

    line: int
    status: str
    status_message: str
    issue_key: str
    hours: str
    timestamp: str
    comment: str
    started: Optional[datetime] = field(default=None, repr=False, compare=False)

    @property
    def is_rejected(self):
        return self.status == STATUS_REJECTED

    def with_status(self, status, status_message):
        return replace(self, status=status, status_message=status_message)

    def to_worklog(self):
        """Build the worklog for Jira; only pending records can be submitted."""
        if self.status != STATUS_PENDING or self.started is None:
            raise ValueError(f"Line {self.line} is {self.status} and cannot be submitted")

        return WorkLogEntry(
            issue_key=self.issue_key,
            comment=unescape_newlines(self.comment),
            started=self.started,
            time_spent=self.hours,
        )

    def as_log_line(self):
        marker = STATUS_MARKERS.get(self.status, "")
        return " | ".join(
            [
                str(self.line),
                f"{marker} {self.status}".strip(),
                self.status_message,
                self.issue_key,
                self.hours,
                self.timestamp,
                self.comment,
            ]
        )


def normalize_record(raw, line, date_format, timezone):
    """Validate a raw record and derive its issue key, hours, start date and comment.

    Every field is derived even after an earlier one fails, so the log line
    shows all problems of a record at once.
    """
    errors = []

    notes = raw.notes or raw.title or raw.project

    issue_key = first_non_empty([raw.title, raw.project, notes], extract_issue_key)
    if not issue_key:
        errors.append(ExtractionFailure(f"no issue key found in '{raw.title}'"))
        issue_key = f"{PLACEHOLDER} {raw.title}"

    comment = first_non_empty([notes, raw.title, raw.project], extract_comment)
    if not comment:
        errors.append(ExtractionFailure("a worklog comment is required"))
        comment = COMMENT_REQUIRED
    comment = escape_newlines(comment)

    try:
        hours = format_duration(raw.duration)
    except DurationParseFailure as e:
        errors.append(e)
        hours = f"{PLACEHOLDER} {raw.duration}"

    started = None
    try:
        started = parse_timestamp(raw.start_date, date_format, timezone)
        timestamp = format_timestamp(started)
    except DateParseFailure as e:
        logger.debug("Line %s: %s", line, e.diagnostic)
        errors.append(e)
        timestamp = f"{PLACEHOLDER} {raw.start_date} fmt: '{date_format}'"

    if errors:
        return NormalizedRecord(
            line=line,
            status=STATUS_REJECTED,
            status_message="; ".join(str(error) for error in errors),
            issue_key=issue_key,
            hours=hours,
            timestamp=timestamp,
            comment=comment,
        )

    return NormalizedRecord(
        line=line,
        status=STATUS_PENDING,
        status_message="validated",
        issue_key=issue_key,
        hours=hours,
        timestamp=timestamp,
        comment=comment,
        started=started,
    )


def rejected_record(line, status_message):
    """Log line for a record that could not be read at all."""
    return NormalizedRecord(
        line=line,
        status=STATUS_REJECTED,
        status_message=status_message,
        issue_key=PLACEHOLDER,
        hours=PLACEHOLDER,
        timestamp=PLACEHOLDER,
        comment=PLACEHOLDER,
    )


def _text(value):
    if value is None:
        return ""
    return str(value)


class WorkLogParser:
    """Reads time-tracking exports and turns their rows into raw records."""

    def __init__(
        self,
        file_path=None,
        csv_delimiter=",",
        offset=1,
        limit=1000,
        columns=None,
        default_time=CSV_DEFAULT_TIME,
    ):
        if offset is None or offset < 0:
            raise InputFileError(f"Offset must be 0 or greater, got {offset}")
        if limit is not None and limit < 0:
            raise InputFileError(f"Limit must be 0 or greater, got {limit}")

        self.file_path = file_path
        self.csv_delimiter = csv_delimiter
        self.offset = offset
        self.limit = limit
        self.columns = columns or CSV_COLUMNS
        self.default_time = default_time

    def detect_format(self, file_path):
        """Return "json" or "csv" based on the file extension."""
        extension = os.path.splitext(file_path)[1].lower()
        if extension in JSON_EXTENSIONS:
            return "json"
        if extension in DELIMITED_EXTENSIONS:
            return "csv"
        raise InputFileError(
            f"Unsupported work log file '{file_path}'. "
            f"Use one of: {', '.join(JSON_EXTENSIONS + DELIMITED_EXTENSIONS)}"
        )

    def read_text(self, file_path):
        """Read a file and decode it, honouring UTF-8 and UTF-16 byte-order marks."""
        try:
            with open(file_path, "rb") as file:
                data = file.read()
        except OSError as e:
            raise InputFileError(f"Cannot read work log file '{file_path}': {e}") from e

        for bom, encoding in BOM_ENCODINGS:
            if data.startswith(bom):
                logger.debug("Detected %s byte-order mark in %s", encoding, file_path)
                data = data[len(bom):]
                break
        else:
            encoding = "utf-8"

        try:
            return data.decode(encoding)
        except UnicodeDecodeError as e:
            raise InputFileError(f"Cannot decode work log file '{file_path}': {e}") from e

    def iter_rows(self, file_path=None):
        """Yield (line number, row) pairs from a JSON or delimited export."""
        if file_path is None:
            file_path = self.file_path

        if file_path is None:
            raise InputFileError("No file path provided")

        file_format = self.detect_format(file_path)
        text = self.read_text(file_path)

        if file_format == "json":
            return self.iter_json_rows(text)
        return self.iter_csv_rows(text)

    def iter_json_rows(self, text):
        """Yield the objects of a JSON array export."""
        text = text.replace("\r\n", "\n").replace("\r", "\n")

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InputFileError(f"Invalid JSON in work log file: {e}") from e

        if not isinstance(data, list):
            raise InputFileError("Invalid JSON format: expected an array of time entries")

        return enumerate(data, start=1)

    def iter_csv_rows(self, text):
        """Yield the rows of a delimited export within offset and limit."""
        try:
            reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.csv_delimiter)
        except TypeError as e:
            raise InputFileError(f"Invalid CSV delimiter {self.csv_delimiter!r}: {e}") from e

        stop = None if self.limit is None else self.offset + self.limit
        rows = itertools.islice(reader, self.offset, stop)

        try:
            for line, row in enumerate(rows, start=self.offset + 1):
                if not self._cell(row, "marker").strip():
                    logger.debug("Skipping blank row at line %s", line)
                    continue
                yield line, row
        except csv.Error as e:
            raise InputFileError(f"Invalid CSV in work log file: {e}") from e

    def to_raw_record(self, row):
        """Convert a JSON object or a delimited row into a RawRecord."""
        if isinstance(row, dict):
            return RawRecord(
                project=_text(row.get("project")),
                title=_text(row.get("title")),
                notes=_text(row.get("notes")),
                duration="" if row.get("duration") is None else row.get("duration"),
                start_date=_text(row.get("startDate")),
            )

        if isinstance(row, list):
            required = max(self.columns.values()) + 1
            if len(row) < required:
                raise ExtractionFailure(
                    f"row has {len(row)} columns, expected at least {required}"
                )
            date_value = self._cell(row, "date").strip()
            return RawRecord(
                title=self._cell(row, "issue_key"),
                notes=self._cell(row, "comment"),
                duration=self._cell(row, "duration").strip(),
                start_date=f"{date_value} {self.default_time}",
            )

        raise ExtractionFailure(f"unsupported record type {type(row).__name__}")

    def _cell(self, row, column):
        index = self.columns[column]
        if index >= len(row):
            return ""
        return row[index]
