from __future__ import annotations

import pytest

from contract_router.pipeline.direct import (
    extract_path_candidate,
    looks_like_path,
    parse_direct_tool_request,
    strip_wrapping_quotes,
)


def test_read_command_matches_filesystem():
    match = parse_direct_tool_request("read /etc/hosts")

    assert match.tool == "filesystem"
    assert match.args == {"action": "read", "path": "/etc/hosts"}
    assert match.reason == "direct_read_filesystem"


def test_cat_and_ls_aliases():
    assert parse_direct_tool_request("cat ./notes.txt").args["action"] == "read"
    listed = parse_direct_tool_request("ls ~/projects/")
    assert listed.args == {"action": "list", "path": "~/projects/"}
    assert listed.reason == "direct_list_filesystem"


def test_quoted_path_may_contain_spaces():
    match = parse_direct_tool_request('list "C:\\Program Files"')

    assert match.args == {"action": "list", "path": "C:\\Program Files"}


@pytest.mark.parametrize(
    "text",
    [
        "read the docs",
        "list my favourite movies",
        "read about python",
        "read /etc/hosts and summarize",
    ],
)
def test_prose_is_not_a_direct_command(text):
    assert parse_direct_tool_request(text) is None


def test_fetch_normalizes_bare_host():
    match = parse_direct_tool_request("get kiltau.com")

    assert match.tool == "http"
    assert match.args == {"url": "https://kiltau.com", "method": "GET"}
    assert match.reason == "direct_get_http"


def test_fetch_keeps_explicit_scheme():
    match = parse_direct_tool_request("fetch http://localhost:8080/health")

    assert match.args["url"] == "http://localhost:8080/health"


@pytest.mark.parametrize("text", ["get notaurl", "get ftp://example.com", "get me a coffee"])
def test_fetch_rejects_non_urls(text):
    assert parse_direct_tool_request(text) is None


@pytest.mark.parametrize(
    "text, expected_args, reason",
    [
        ("ps", {"action": "list"}, "direct_process"),
        ("processes", {"action": "list"}, "direct_process"),
        ("list processes", {"action": "list"}, "direct_process"),
        ("ps node", {"action": "list", "query": "node"}, "direct_process_with_filter"),
        ("list processes 'chrome'", {"action": "list", "query": "chrome"}, "direct_process_with_filter"),
    ],
)
def test_process_commands(text, expected_args, reason):
    match = parse_direct_tool_request(text)

    assert match.tool == "process"
    assert match.args == expected_args
    assert match.reason == reason


@pytest.mark.parametrize("text", ["", "   ", "read /etc/hosts\nread /etc/passwd"])
def test_empty_or_multiline_input_is_ignored(text):
    assert parse_direct_tool_request(text) is None


@pytest.mark.parametrize(
    "value, expected",
    [
        ("/etc/hosts", True),
        ("C:\\Users", True),
        ("D:/data", True),
        ("./src", True),
        (".env", True),
        ("notes.txt", True),
        ("'/tmp/a b'", True),
        ("https://example.com/a", False),
        ("hello", False),
        ("", False),
    ],
)
def test_looks_like_path(value, expected):
    assert looks_like_path(value) is expected


def test_extract_path_candidate():
    assert extract_path_candidate("find logs in /var/log?") == "/var/log"
    assert extract_path_candidate('search "My Docs/report.pdf" please') == "My Docs/report.pdf"
    assert extract_path_candidate("find my keys") is None


def test_strip_wrapping_quotes():
    assert strip_wrapping_quotes(' "a b" ') == "a b"
    assert strip_wrapping_quotes("`x`") == "x"
    assert strip_wrapping_quotes("'unbalanced") == "'unbalanced"
