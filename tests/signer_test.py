import subprocess
from datetime import datetime
from datetime import timezone
from unittest.mock import patch

from structlog.testing import capture_logs

from lockaudit.services.signer import archive_report
from lockaudit.services.signer import GpgSigner


def test_sign_without_gpg_returns_none(tmp_path):
    report = tmp_path / 'report.json'
    report.write_text('{}')
    with patch('lockaudit.services.signer.shutil.which', return_value=None), capture_logs() as captured:
        assert GpgSigner().sign(report) is None
    assert captured[0]['event'] == 'GPG not available, skipping report signing'


@patch('lockaudit.services.signer.subprocess.run')
@patch('lockaudit.services.signer.shutil.which', return_value='/usr/bin/gpg')
def test_sign_success(mock_which, mock_run, tmp_path):
    report = tmp_path / 'report.json'
    report.write_text('{}')

    signature = GpgSigner(key='ops@example.com').sign(report)

    assert signature == tmp_path / 'report.json.sig'
    command = mock_run.call_args[0][0]
    assert command[:5] == ['gpg', '--batch', '--yes', '--detach-sign', '--armor']
    assert ['--local-user', 'ops@example.com'] == command[5:7]
    assert command[-1] == str(report)
    assert mock_run.call_args[1]['check'] is True


@patch('lockaudit.services.signer.subprocess.run')
@patch('lockaudit.services.signer.shutil.which', return_value='/usr/bin/gpg')
def test_sign_failure_returns_none(mock_which, mock_run, tmp_path):
    mock_run.side_effect = subprocess.CalledProcessError(2, ['gpg'], stderr='no secret key\n')
    with capture_logs() as captured:
        assert GpgSigner().sign(tmp_path / 'report.json') is None
    assert captured[0]['error_output'] == 'no secret key'


def test_archive_report(tmp_path):
    report = tmp_path / 'demo-compliance-report.json'
    report.write_text('{"status": "PASS"}')
    now = datetime(2024, 3, 2, 9, 30, 5, tzinfo=timezone.utc)

    archived = archive_report(report, tmp_path / 'archive', now=now)

    assert archived == tmp_path / 'archive' / 'demo-compliance-report-20240302-093005.json'
    assert archived.read_text() == '{"status": "PASS"}'


def test_archive_missing_report_returns_none(tmp_path):
    assert archive_report(tmp_path / 'missing.json', tmp_path / 'archive') is None
