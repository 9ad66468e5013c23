import io
from datetime import datetime

import pytest

from migrateflow.cli_log import CliLog

STAMP_FORMAT = "%Y/%m/%d %H:%M:%S"
STAMP_LENGTH = len("2000/01/01 00:00:00")


def make_log(verbose=False):
    stream = io.StringIO()
    return CliLog(verbose=verbose, stream=stream), stream


def split_stamp(value):
    """Split a timestamped line into its parsed stamp and the remaining text."""
    stamp = datetime.strptime(value[:STAMP_LENGTH], STAMP_FORMAT)
    return stamp, value[STAMP_LENGTH:]


def test_printf_plain_formats_arguments():
    log, stream = make_log()
    log.printf("%s (%s)\n", "1/u create", "read")
    assert stream.getvalue() == "1/u create (read)\n"


def test_printf_plain_does_not_add_newline():
    log, stream = make_log()
    log.printf("partial")
    assert stream.getvalue() == "partial"


def test_printf_without_args_keeps_percent_signs():
    log, stream = make_log()
    log.printf("100%")
    assert stream.getvalue() == "100%"


def test_println_joins_with_spaces():
    log, stream = make_log()
    log.println("version", 3)
    assert stream.getvalue() == "version 3\n"


def test_verbose_println_is_timestamped():
    log, stream = make_log(verbose=True)
    log.println("hello")
    stamp, rest = split_stamp(stream.getvalue())
    assert rest == " hello\n"
    assert stamp.year >= 2000


def test_verbose_printf_adds_newline():
    log, stream = make_log(verbose=True)
    log.printf("Scheduled %s", "1/u x")
    stamp, rest = split_stamp(stream.getvalue())
    assert rest == " Scheduled 1/u x\n"
    assert stamp.year >= 2000


def test_verbose_printf_keeps_single_newline():
    log, stream = make_log(verbose=True)
    log.printf("done\n")
    assert stream.getvalue().count("\n") == 1


def test_verbose_flag_is_exposed():
    assert CliLog(verbose=True).verbose is True
    assert CliLog().verbose is False


def test_fatal_prints_and_exits_with_one():
    log, stream = make_log()
    with pytest.raises(SystemExit) as info:
        log.fatal("bad", "thing")
    assert info.value.code == 1
    assert stream.getvalue() == "bad thing\n"


def test_fatal_err_prefixes_error():
    log, stream = make_log()
    with pytest.raises(SystemExit) as info:
        log.fatal_err(ValueError("boom"))
    assert info.value.code == 1
    assert stream.getvalue() == "error: boom\n"


def test_defaults_to_stderr(capsys):
    log = CliLog()
    log.println("to stderr")
    captured = capsys.readouterr()
    assert captured.err == "to stderr\n"
    assert captured.out == ""