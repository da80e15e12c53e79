import shutil
import subprocess
from abc import ABC
from abc import abstractmethod
from datetime import datetime
from datetime import timezone
from pathlib import Path

import structlog

logger = structlog.get_logger('signer')


class Signer(ABC):
    """Produces a detached signature for a written report."""

    @abstractmethod
    def sign(self, path: Path) -> Path | None:
        """Returns the signature path, or None when signing was not possible."""


class GpgSigner(Signer):
    def __init__(self, executable: str = 'gpg', key: str | None = None):
        self.executable = executable
        self.key = key

    def sign(self, path: Path) -> Path | None:
        if not shutil.which(self.executable):
            logger.warning('GPG not available, skipping report signing', executable=self.executable)
            return None

        signature = path.with_name(path.name + '.sig')
        command = [self.executable, '--batch', '--yes', '--detach-sign', '--armor']
        if self.key:
            command += ['--local-user', self.key]
        command += ['--output', str(signature), str(path)]
        try:
            subprocess.run(command, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            logger.warning(
                'Could not sign report',
                command=' '.join(command),
                returncode=e.returncode,
                error_output=(e.stderr or '').strip(),
            )
            return None
        logger.info('Signed report', signature=str(signature))
        return signature


def archive_report(report_path: Path, archive_dir: Path, now: datetime | None = None) -> Path | None:
    """Copy a written report to ``<archive_dir>/<base>-<YYYYmmdd-HHMMSS><ext>``."""
    now = now or datetime.now(timezone.utc)
    target = archive_dir / f'{report_path.stem}-{now:%Y%m%d-%H%M%S}{report_path.suffix}'
    try:
        archive_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(report_path, target)
    except OSError as e:
        logger.warning('Could not archive report', path=str(report_path), error=str(e))
        return None
    logger.debug('Archived report', path=str(target))
    return target
