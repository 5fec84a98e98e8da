import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

import import_worklogs
from import_worklogs import RunLog, resolve_delimiter, run_import, submit_record
from worklog_parser import (
    STATUS_DRY_RUN,
    STATUS_REJECTED,
    STATUS_SUBMITTED,
    SubmissionFailure,
    WorkLogParser,
    normalize_record,
    RawRecord,
)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

ENTRIES = [
    {
        "project": "Client site",
        "title": "BSP-9",
        "notes": "BSP-9 - Timesheets\nand review",
        "duration": "1:27:33",
        "startDate": "2024-03-01T09:15:00-05:00",
    },
    {
        "project": "",
        "title": "",
        "notes": "",
        "duration": "0:30:00",
        "startDate": "2024-03-01T11:00:00-05:00",
    },
    {
        "project": "Internal",
        "title": "OPS-3: Standup",
        "notes": "",
        "duration": "0:10:00",
        "startDate": "yesterday",
    },
    "not an object",
]


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "All Activities.json"
    path.write_text(json.dumps(ENTRIES), encoding="utf-8")
    return path


@pytest.fixture
def run_log(tmp_path):
    return RunLog(str(tmp_path / "files" / "import.log"))


def _pending_record():
    raw = RawRecord(
        project="",
        title="BSP-9",
        notes="BSP-9 - a\nb",
        duration="1:00:00",
        start_date="2024-03-01T09:00:00-05:00",
    )
    return normalize_record(raw, 1, ISO_FORMAT, "America/Bogota")


def test_submit_record_dry_run_never_calls_client():
    client = MagicMock()

    record = submit_record(_pending_record(), client, dry_run=True)

    assert record.status == STATUS_DRY_RUN
    assert record.status_message == "dry-run"
    client.add_worklog.assert_not_called()


def test_submit_record_sends_unescaped_comment():
    client = MagicMock()
    client.add_worklog.return_value = "10042"

    record = submit_record(_pending_record(), client, dry_run=False)

    assert record.status == STATUS_SUBMITTED
    assert record.status_message == "logged (10042)"
    issue_key, comment, started, time_spent = client.add_worklog.call_args.args
    assert (issue_key, comment, time_spent) == ("BSP-9", "a\nb", "1h")
    assert started.isoformat() == "2024-03-01T09:00:00-05:00"


def test_submit_record_api_error_rejects():
    client = MagicMock()
    client.add_worklog.side_effect = SubmissionFailure("BSP-9", "HTTP 404: Issue does not exist", 404)

    record = submit_record(_pending_record(), client, dry_run=False)

    assert record.status == STATUS_REJECTED
    assert record.status_message == "api error: HTTP 404: Issue does not exist"


def test_submit_record_skips_rejected_records():
    client = MagicMock()
    rejected = _pending_record().with_status(STATUS_REJECTED, "skipped")

    assert submit_record(rejected, client, dry_run=False) is rejected
    client.add_worklog.assert_not_called()


def test_run_import_logs_one_line_per_record(export_file, run_log):
    client = MagicMock()
    client.add_worklog.return_value = "501"

    counts = run_import(
        WorkLogParser(), str(export_file), client, run_log, ISO_FORMAT, "America/Bogota"
    )

    lines = Path(run_log.log_file).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 4
    assert lines[0] == (
        "1 | 🟢 submitted | logged (501) | BSP-9 | 1.5h | 2024-03-01 09:15:00 | Timesheets\\nand review"
    )
    assert lines[1].startswith("2 | 🔴 rejected | no issue key found")
    assert "⭕ yesterday fmt:" in lines[2]
    assert lines[3].startswith("4 | 🔴 rejected | unsupported record type str")
    assert counts == {STATUS_SUBMITTED: 1, STATUS_DRY_RUN: 0, STATUS_REJECTED: 3}
    client.add_worklog.assert_called_once()


def test_run_import_dry_run_without_client(export_file, run_log):
    counts = run_import(
        WorkLogParser(), str(export_file), None, run_log, ISO_FORMAT, "America/Bogota", dry_run=True
    )

    assert counts[STATUS_DRY_RUN] == 1
    assert counts[STATUS_REJECTED] == 3


def test_run_import_csv(tmp_path, run_log):
    path = tmp_path / "export.csv"
    row = [""] * 13
    row[1], row[5], row[7], row[11], row[12] = "Timing", "Code review", "01/03/2024", "0:50:00", "BSP-2"
    path.write_text(",".join(["h"] * 13) + "\n" + ",".join(row) + "\n", encoding="utf-8")

    counts = run_import(
        WorkLogParser(), str(path), None, run_log, "%d/%m/%Y %H:%M:%S", "America/Bogota", dry_run=True
    )

    assert counts[STATUS_DRY_RUN] == 1
    line = Path(run_log.log_file).read_text(encoding="utf-8").strip()
    assert line == "2 | 🕓 dry_run | dry-run | BSP-2 | 1h | 2024-03-01 12:00:00 | Code review"


def test_run_import_huge_duration_rejects_only_that_record(tmp_path, run_log):
    path = tmp_path / "export.json"
    entries = [dict(ENTRIES[0], duration="1E+1000000"), dict(ENTRIES[0], duration="0:45:00")]
    path.write_text(json.dumps(entries), encoding="utf-8")

    counts = run_import(
        WorkLogParser(), str(path), None, run_log, ISO_FORMAT, "America/Bogota", dry_run=True
    )

    lines = Path(run_log.log_file).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("1 | 🔴 rejected |")
    assert "hours out of range" in lines[0]
    assert lines[1].startswith("2 | 🕓 dry_run | dry-run | BSP-9 | 0.75h |")
    assert counts == {STATUS_SUBMITTED: 0, STATUS_DRY_RUN: 1, STATUS_REJECTED: 1}


def test_resolve_delimiter():
    assert resolve_delimiter("export.tsv", None) == "\t"
    assert resolve_delimiter("export.csv", ";") == ";"
    assert resolve_delimiter("export.csv", "\\t") == "\t"


def test_main_dry_run(export_file, tmp_path, capsys):
    log_file = tmp_path / "run.log"

    exit_code = import_worklogs.main(
        [str(export_file), "--dry-run", "--date-timezone", "Asia/Dhaka", "--log-file", str(log_file)]
    )

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Jira Worklog Import" in output
    assert "1 | 🕓 dry_run | dry-run | BSP-9 | 1.5h | 2024-03-01 20:15:00" in output
    assert "SUMMARY: 0 submitted, 1 dry_run, 3 rejected" in output
    assert log_file.read_text(encoding="utf-8").count("\n") == len(output.splitlines())


def test_main_missing_file_aborts(tmp_path):
    log_file = tmp_path / "run.log"

    exit_code = import_worklogs.main(
        [str(tmp_path / "missing.json"), "--dry-run", "--log-file", str(log_file)]
    )

    assert exit_code == 1
    assert "Error: Cannot read work log file" in log_file.read_text(encoding="utf-8")


@pytest.mark.parametrize("flag", ["--offset", "--limit"])
def test_main_negative_offset_or_limit_aborts(export_file, tmp_path, monkeypatch, flag):
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_host", "https://example.atlassian.net")
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_user", "me@example.com")
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_pass", "token")
    client = MagicMock()
    monkeypatch.setattr(import_worklogs, "JiraWorklogClient", MagicMock(return_value=client))
    log_file = tmp_path / "run.log"

    exit_code = import_worklogs.main([str(export_file), flag, "-1", "--log-file", str(log_file)])

    assert exit_code == 1
    assert "Error: " in log_file.read_text(encoding="utf-8")
    assert "0 or greater" in log_file.read_text(encoding="utf-8")
    client.add_worklog.assert_not_called()
    client.close.assert_called_once()


def test_main_requires_credentials_unless_dry_run(export_file, tmp_path, monkeypatch):
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_host", "")
    log_file = tmp_path / "run.log"

    exit_code = import_worklogs.main([str(export_file), "--log-file", str(log_file)])

    assert exit_code == 1
    assert "JIRA_HOST" in log_file.read_text(encoding="utf-8")


def test_main_submits_with_configured_client(export_file, tmp_path, monkeypatch):
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_host", "https://example.atlassian.net")
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_user", "me@example.com")
    monkeypatch.setitem(import_worklogs.CONFIG, "jira_pass", "token")
    client = MagicMock()
    client.add_worklog.return_value = "77"
    client_class = MagicMock(return_value=client)
    monkeypatch.setattr(import_worklogs, "JiraWorklogClient", client_class)

    exit_code = import_worklogs.main([str(export_file), "--log-file", str(tmp_path / "run.log")])

    assert exit_code == 0
    client_class.assert_called_once()
    client.add_worklog.assert_called_once()
    client.close.assert_called_once()
