from __future__ import annotations

import pytest

from contract_router.context import ContextSnapshot
from contract_router.pipeline.arguments import (
    apply_filesystem_cwd,
    apply_search_cwd,
    apply_shell_cwd,
    apply_working_directory_defaults,
    are_all_arguments_null,
    describe_verification_notes,
    missing_context_fields,
    should_skip_tool_execution,
)

SCHEMA = {"a": "string", "b": "string", "c": "number", "d": "string|null"}


def _snapshot(cwd):
    return ContextSnapshot.from_dict({"environment": {"cwd": cwd}})


@pytest.mark.parametrize(
    "args, expected",
    [
        ({"a": "x", "b": "y", "c": 1, "d": None}, False),
        ({"a": "x", "b": None, "c": 1, "d": None}, False),
        # 2/3 required fields null
        ({"a": "x", "b": None, "c": None, "d": "z"}, True),
        ({"a": None, "b": None, "c": None, "d": None}, True),
        ({"a": "x"}, True),
        # blank strings count as missing
        ({"a": "", "b": "  ", "c": 1, "d": None}, True),
        ({"a": "x", "b": " ", "c": 1, "d": None}, False),
    ],
)
def test_should_skip_tool_execution(args, expected):
    assert should_skip_tool_execution(SCHEMA, args) is expected


def test_ratio_equal_to_threshold_does_not_skip():
    schema = {"a": "string", "b": "string"}

    assert should_skip_tool_execution(schema, {"a": "x", "b": None}, threshold=0.5) is False
    assert should_skip_tool_execution(schema, {"a": "x", "b": None}, threshold=0.4) is True


def test_no_required_fields_never_skips():
    assert should_skip_tool_execution({"q": "string|null"}, {"q": None}) is False
    assert should_skip_tool_execution({}, {}) is False


def test_are_all_arguments_null():
    assert are_all_arguments_null({"a": None, "b": None})
    assert are_all_arguments_null({})
    assert not are_all_arguments_null({"a": None, "b": 0})
    assert are_all_arguments_null({"a": "", "b": "  "})


def test_missing_context_fields():
    assert missing_context_fields("filesystem", {"path": "  "}) == ["path"]
    assert missing_context_fields("filesystem", {"path": "/tmp"}) == []
    assert missing_context_fields("search", {"baseDir": None}) == ["baseDir"]
    assert missing_context_fields("http", {}) == []


def test_filesystem_cwd_defaults():
    assert apply_filesystem_cwd({"action": "list", "path": None}, "/home/me")["path"] == "/home/me"
    assert apply_filesystem_cwd({"path": "src"}, "/home/me/")["path"] == "/home/me/src"
    assert apply_filesystem_cwd({"path": "/etc"}, "/home/me")["path"] == "/etc"
    assert apply_filesystem_cwd({"path": "~/notes"}, "/home/me")["path"] == "~/notes"
    assert apply_filesystem_cwd({"path": "docs"}, "C:\\Users\\me")["path"] == "C:\\Users\\me\\docs"


def test_search_cwd_defaults():
    args = apply_search_cwd({"query": "*.py", "baseDir": None, "startPath": None}, "/repo")
    assert args["baseDir"] == "/repo"
    assert args["startPath"] is None

    args = apply_search_cwd({"query": "*.py", "baseDir": "lib", "startPath": None}, "/repo")
    assert args["baseDir"] == "/repo/lib"
    assert args["startPath"] is None
    # absolute startPath outside baseDir replaces it
    args = apply_search_cwd({"query": "x", "baseDir": "/repo", "startPath": "/var/log"}, "/repo")
    assert args["baseDir"] == "/var/log"
    assert args["startPath"] is None

    args = apply_search_cwd({"query": "x", "baseDir": "/repo", "startPath": "/repo/src/pkg"}, "/tmp")
    assert args["baseDir"] == "/repo"
    assert args["startPath"] == "src/pkg"

    args = apply_search_cwd({"query": "x", "baseDir": "/repo", "startPath": "./src"}, "/tmp")
    assert args["startPath"] == "./src"


def test_working_directory_defaults_need_a_cwd():
    args = {"action": "list", "path": None}

    assert apply_working_directory_defaults("filesystem", args, None) is args
    assert apply_working_directory_defaults("filesystem", args, _snapshot("   ")) is args
    assert apply_working_directory_defaults("filesystem", args, _snapshot("/srv"))["path"] == "/srv"
    assert apply_working_directory_defaults("http", {"url": "x"}, _snapshot("/srv")) == {"url": "x"}


def test_shell_cwd_only_fills_blank_cwd():
    snapshot = _snapshot("/work")

    assert apply_shell_cwd("shell", {"program": "ls", "cwd": None}, snapshot)["cwd"] == "/work"
    assert apply_shell_cwd("shell", {"program": "ls", "cwd": "/tmp"}, snapshot)["cwd"] == "/tmp"
    assert apply_shell_cwd("process", {"action": "list"}, snapshot) == {"action": "list"}


def test_describe_verification_notes():
    notes = describe_verification_notes("path looks wrong", ["path"], {"path": "/tmp", "limit": 5})

    assert notes.splitlines() == [
        "Reason: path looks wrong",
        "Missing fields: path",
        "Suggested arguments: path='/tmp', limit=5",
    ]
    assert describe_verification_notes("", [], None) == ""


def test_blank_required_strings_skip_tool():
    assert should_skip_tool_execution({"a": "string", "b": "string"}, {"a": "", "b": "  "}) is True
