import json

import pytest

import rubylet_cli
from rubylet_cli import main, needs_more_input


CATALOG = [
    {"id": 1, "title": "Greeting", "expected_output": "Hello, world!\n"},
    {"id": 2, "title": "Count", "expected_output": "1\n2\n3\n"},
]


@pytest.fixture
def catalog(tmp_path):
    path = tmp_path / "puzzles.json"
    path.write_text(json.dumps(CATALOG), encoding="utf-8")
    return str(path)


def write_script(tmp_path, source, name="script.rb"):
    path = tmp_path / name
    path.write_text(source, encoding="utf-8")
    return str(path)


# --- running files ---

def test_run_file(tmp_path, capsys):
    assert main([write_script(tmp_path, "puts 'hi'\np :x")]) == 0
    assert capsys.readouterr().out == "hi\n:x\n"


def test_run_file_with_error(tmp_path, capsys):
    status = main([write_script(tmp_path, "puts 'before'\nboom")])
    captured = capsys.readouterr()
    assert status == 1
    assert captured.out == "before\n"
    assert "Error on line 2: NameError" in captured.err


def test_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "absent.rb")])
    assert exc.value.code == 1
    assert "file not found" in capsys.readouterr().err


# --- grading ---

def test_check_pass(tmp_path, catalog, capsys):
    script = write_script(tmp_path, "puts 'Hello, world!'")
    assert main(["--check", catalog, "1", script]) == 0
    assert capsys.readouterr().out == "PASS 1: Greeting\n"


def test_check_mismatch(tmp_path, catalog, capsys):
    script = write_script(tmp_path, "puts 1\nputs 2")
    assert main(["--check", catalog, "2", script]) == 1
    out = capsys.readouterr().out
    assert out == "FAIL 2: Count\n--- output ---\n1\n2\n--- expected ---\n1\n2\n3\n"


def test_check_error(tmp_path, catalog, capsys):
    script = write_script(tmp_path, "puts 1 / 0")
    assert main(["--check", catalog, "2", script]) == 1
    out = capsys.readouterr().out
    assert out.startswith("FAIL 2: Count\nError on line 1: ZeroDivisionError: divided by 0")


def test_check_unknown_puzzle(tmp_path, catalog, capsys):
    script = write_script(tmp_path, "puts 1")
    assert main(["--check", catalog, "42", script]) == 2
    assert "no puzzle with id 42" in capsys.readouterr().err


# --- REPL input handling ---

@pytest.mark.parametrize("source, expected", [
    ("puts 1", False),
    ("def greet", True),
    ("def greet\n  'hi'\nend", False),
    ("def square(x) = x * x", False),
    ("[1, 2].each do |v|", True),
    ("[1, 2].each { |v|", True),
    ("if true\n  while false", True),
    ("puts 'open", True),
    ("nums = [1,", True),
    ("x = (1))", False),
], ids=["simple", "open-def", "closed-def", "endless-def", "open-do", "open-brace",
        "nested", "open-string", "open-bracket", "stray-paren"])
def test_needs_more_input(source, expected):
    assert needs_more_input(source) is expected


def feed(monkeypatch, lines):
    pending = iter(lines)

    def fake_input(prompt=""):
        try:
            return next(pending)
        except StopIteration:
            raise EOFError
    monkeypatch.setattr("builtins.input", fake_input)


def test_repl_session(monkeypatch, capsys):
    feed(monkeypatch, ["x = 2", "if x > 1", "  puts 'big'", "end", "", "x * 10", "exit"])
    assert main([]) == 0
    out = capsys.readouterr().out
    assert out.startswith("rubylet REPL v0.1\n")
    assert "=> 2\n" in out
    assert "big\n=> nil\n" in out
    assert "=> 20\n" in out


def test_repl_reports_errors_and_continues(monkeypatch, capsys):
    feed(monkeypatch, ["nope", "'still here'"])
    rubylet_cli.repl()
    captured = capsys.readouterr()
    assert "NameError" in captured.err
    assert '=> "still here"\n' in captured.out
    assert captured.out.endswith("\nExiting.\n")
