import pytest
import typer

from lockaudit.core.decorators import EXIT_FATAL
from lockaudit.core.decorators import handle_errors
from lockaudit.core.errors import MalformedPolicyFile


def raising(exc):
    @handle_errors
    def command():
        raise exc
    return command


def test_domain_error_is_one_line_and_fatal(capsys):
    command = raising(MalformedPolicyFile('bad', path='policy.yml', field='rules.custom[0]'))
    with pytest.raises(typer.Exit) as exc:
        command()
    assert exc.value.exit_code == EXIT_FATAL
    err = capsys.readouterr().err
    assert 'MalformedPolicyFile: policy.yml [rules.custom[0]]: bad' in err


def test_unexpected_error_and_interrupt():
    with pytest.raises(typer.Exit) as exc:
        raising(RuntimeError('boom'))()
    assert exc.value.exit_code == EXIT_FATAL

    with pytest.raises(typer.Exit) as exc:
        raising(KeyboardInterrupt())()
    assert exc.value.exit_code == 130


def test_exit_passes_through():
    with pytest.raises(typer.Exit) as exc:
        raising(typer.Exit(1))()
    assert exc.value.exit_code == 1


def test_return_value_preserved():
    @handle_errors
    def command(value):
        return value * 2
    assert command(21) == 42
    assert command.__name__ == 'command'
