import hashlib
import os

import pytest
from structlog.testing import capture_logs

from conftest import make_dep
from conftest import make_snapshot
from lockaudit.core.errors import IntegrityUnverifiable
from lockaudit.models.integrity import IntegrityStatus
from lockaudit.services.integrity_service import collect_files
from lockaudit.services.integrity_service import compute_checksum
from lockaudit.services.integrity_service import IntegrityVerifier


def populate(directory):
    (directory / 'src').mkdir(parents=True)
    (directory / 'src' / 'radix.cr').write_text('module Radix; end\n')
    (directory / 'shard.yml').write_text('name: radix\n')
    return directory


def test_collect_files_skips_vcs_and_nested_lib(tmp_path):
    base = populate(tmp_path / 'radix')
    (base / '.git').mkdir()
    (base / '.git' / 'HEAD').write_text('ref: refs/heads/main\n')
    (base / 'lib' / 'other').mkdir(parents=True)
    (base / 'lib' / 'other' / 'x.cr').write_text('')
    (base / 'src' / 'lib').mkdir()
    (base / 'src' / 'lib' / 'kept.cr').write_text('')

    assert collect_files(base) == ['shard.yml', 'src/lib/kept.cr', 'src/radix.cr']


def test_checksum_algorithm(tmp_path):
    base = tmp_path / 'pkg'
    base.mkdir()
    (base / 'a.txt').write_bytes(b'hello')

    expected = hashlib.sha256(b'a.txt\x005\x00hello').hexdigest()
    assert compute_checksum(base) == f'sha256:{expected}'


def test_checksum_is_deterministic_and_content_sensitive(tmp_path):
    one = populate(tmp_path / 'one')
    two = populate(tmp_path / 'two')
    assert compute_checksum(one) == compute_checksum(two)

    (two / 'shard.yml').write_text('name: radix2\n')
    assert compute_checksum(one) != compute_checksum(two)


@pytest.mark.skipif(not hasattr(os, 'symlink'), reason='symlinks unsupported')
def test_symlinked_directories_are_skipped(tmp_path):
    base = populate(tmp_path / 'radix')
    before = compute_checksum(base)
    outside = tmp_path / 'outside'
    outside.mkdir()
    (outside / 'big.bin').write_bytes(b'\0' * 10)
    os.symlink(outside, base / 'linked', target_is_directory=True)
    assert compute_checksum(base) == before


def test_verify_statuses(tmp_path):
    lib = tmp_path / 'lib'
    good = populate(lib / 'good')
    populate(lib / 'bad')
    verifier = IntegrityVerifier(lib, tmp_path)

    snapshot = make_snapshot(
        make_dep('good', '1.0.0', checksum=compute_checksum(good)),
        make_dep('bad', '1.0.0', checksum='sha256:' + '0' * 64),
        make_dep('unpinned', '1.0.0'),
    )
    with capture_logs() as captured:
        result = verifier.verify(snapshot)

    statuses = {e.name: e.status for e in result.entries}
    assert statuses == {
        'good': IntegrityStatus.VERIFIED,
        'bad': IntegrityStatus.MISMATCH,
        'unpinned': IntegrityStatus.UNVERIFIED,
    }
    assert [v.name for v in result.violations] == ['bad']
    assert result.unverified == ['unpinned']
    assert not result.all_verified
    assert any(e['event'] == 'Checksum mismatch' and e['package'] == 'bad' for e in captured)


def test_absent_content_is_unverifiable(tmp_path):
    verifier = IntegrityVerifier(tmp_path / 'lib', tmp_path)
    with pytest.raises(IntegrityUnverifiable) as exc:
        verifier.verify_dependency(make_dep('ghost', '1.0.0', checksum='sha256:abc'))
    assert 'ghost' in str(exc.value)


def test_path_dependency_checked_in_place(tmp_path):
    local = populate(tmp_path / 'vendor' / 'local')
    dep = make_dep(
        'local', '0.1.0', source='vendor/local', source_kind='path', checksum=compute_checksum(local),
    )
    entry = IntegrityVerifier(tmp_path / 'lib', tmp_path).verify_dependency(dep)
    assert entry.status == IntegrityStatus.VERIFIED
