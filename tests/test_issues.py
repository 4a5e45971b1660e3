import pytest

from magikoopa.issues import (
    Issue,
    IssueLog,
    IssueType,
    build_editor_command,
    parse_issue,
)


def test_parse_issue_with_column():
    issue = parse_issue("main.cpp:12:5: error: boom", IssueType.ERROR)
    assert issue == Issue(" boom", "main.cpp", 12, 5, IssueType.ERROR)
    assert issue.text == " boom\nmain.cpp, Line 12"


def test_parse_issue_keeps_label():
    issue = parse_issue("main.cpp:12: warning: odd", IssueType.WARNING, remove_label=False)
    assert issue.message == "warning: odd"
    assert issue.column == 0
    assert issue.line == 12


def test_parse_issue_without_location():
    assert parse_issue("make: nothing to do", IssueType.ERROR) is None
    assert parse_issue("plain text", IssueType.ERROR) is None


def test_log_records_warning():
    log = IssueLog()
    assert log.title == "Issues"
    issue = log.append_output("Compiler", "a.c:3:1: warning: unused\n", False)
    assert log.output == ["a.c:3:1: warning: unused"]
    assert issue.kind is IssueType.WARNING
    assert issue.path == "a.c"
    assert log.issues == [issue]
    assert log.title == "Issues (1)"


def test_log_category_prefix_hides_location():
    log = IssueLog()
    result = log.append_output("Compiler", "a.c:3:1: error: bad", True)
    assert log.output == ["[Compiler] a.c:3:1: error: bad"]
    assert result is None
    assert log.issues == []


def test_undefined_reference_keeps_message():
    log = IssueLog()
    issue = log.append_output("Compiler", "foo.o:bar.c:(.text+0x10): undefined reference to `x'")
    assert issue.kind is IssueType.ERROR
    assert issue.message == "undefined reference to `x'"
    assert issue.path == "foo.o"
    assert issue.line == 0


def test_plain_output_is_not_an_issue():
    log = IssueLog()
    assert log.append_output("Compiler", "linking newcode.elf\n") is None
    assert log.issues == []
    log.clear()
    assert log.output == []


def test_clear_resets_title():
    log = IssueLog()
    log.append_output("Compiler", "a.c:1: error: x")
    log.clear()
    assert log.issues == []
    assert log.title == "Issues"


def test_editor_command():
    issue = Issue("boom", "main.cpp", 12, 5, IssueType.ERROR)
    program, args = build_editor_command("code  -g %path%:%line%:%column%", issue)
    assert program == "code"
    assert args == ["-g", "main.cpp:12:5"]


def test_editor_command_without_path():
    issue = Issue("boom", "", 1, 0, IssueType.ERROR)
    assert build_editor_command("code %path%", issue) is None


def test_editor_command_not_set():
    issue = Issue("boom", "main.cpp", 1, 0, IssueType.ERROR)
    with pytest.raises(ValueError, match="Set Text Editor"):
        build_editor_command("", issue)