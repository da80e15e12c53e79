from datetime import date

import pytest

from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.services.ignore_service import load_ignore_entries
from lockaudit.services.ignore_service import parse_ignore_file
from lockaudit.services.ignore_service import split_ignores

IGNORE_FILE = """\
ignore:
  - id: GHSA-aaaa-bbbb-cccc
    reason: not reachable
    expires: 2024-06-30
  - OSV-2024-1
"""


def test_parse_ignore_file():
    entries = parse_ignore_file(IGNORE_FILE)
    assert [e.id for e in entries] == ['GHSA-aaaa-bbbb-cccc', 'OSV-2024-1']
    assert entries[0].expires == date(2024, 6, 30)
    assert entries[0].reason == 'not reachable'
    assert entries[1].expires is None


def test_empty_ignore_file():
    assert parse_ignore_file('') == []
    assert parse_ignore_file('ignore:\n') == []


@pytest.mark.parametrize('text,field', [
    ('ignores: []\n', None),
    ('ignore: GHSA-1\n', 'ignore'),
    ('ignore:\n  - reason: no id\n', 'ignore[0]'),
    ('ignore:\n  - id: GHSA-1\n    expires: someday\n', 'ignore[0].expires'),
])
def test_malformed_ignore_file(text, field):
    with pytest.raises(MalformedPolicyFile) as exc:
        parse_ignore_file(text, origin='.lockaudit-ignore.yml')
    assert exc.value.field == field
    assert exc.value.path == '.lockaudit-ignore.yml'


def test_load_ignore_entries(tmp_path):
    path = tmp_path / 'ignore.yml'
    assert load_ignore_entries(path) == []

    path.write_text(IGNORE_FILE)
    entries = load_ignore_entries(path, ids=['GHSA-extra'])
    assert [e.id for e in entries] == ['GHSA-aaaa-bbbb-cccc', 'OSV-2024-1', 'GHSA-extra']
    assert entries[-1].reason == 'ignored on the command line'


def test_required_ignore_file_must_exist(tmp_path):
    with pytest.raises(MalformedPolicyFile):
        load_ignore_entries(tmp_path / 'missing.yml', required=True)


def test_split_ignores_by_expiry():
    entries = parse_ignore_file(IGNORE_FILE)

    active, expired = split_ignores(entries, today=date(2024, 6, 30))
    assert set(active) == {'GHSA-aaaa-bbbb-cccc', 'OSV-2024-1'}
    assert expired == []

    active, expired = split_ignores(entries, today=date(2024, 7, 1))
    assert set(active) == {'OSV-2024-1'}
    assert [e.id for e in expired] == ['GHSA-aaaa-bbbb-cccc']
