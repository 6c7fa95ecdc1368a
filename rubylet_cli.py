import argparse
import sys
from pathlib import Path

from rubylet.rubylet_catalog import load_catalog, find_puzzle, check_solution
from rubylet.rubylet_datatypes import StructuralError, UnterminatedLiteral
from rubylet.rubylet_runtime import ScriptRunner
from rubylet.rubylet_scanner import logical_lines, block_opener, is_terminator


def read_source(file_path: str) -> str:
    try:
        return Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)


def run_script_file(file_path: str) -> int:
    """Run a script file non-interactively; returns the exit status."""
    runner = ScriptRunner()
    result = runner.handle_script(read_source(file_path))
    sys.stdout.write(result.output)
    sys.stdout.flush()
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    return 0


def check_file(catalog_path: str, puzzle_id: str, file_path: str) -> int:
    """Grade a solution file against one catalog puzzle."""
    puzzle = find_puzzle(load_catalog(catalog_path), puzzle_id)
    if puzzle is None:
        print(f"Error: no puzzle with id {puzzle_id} in {catalog_path}", file=sys.stderr)
        return 2
    outcome = check_solution(read_source(file_path), puzzle.expected_output)
    if outcome["success"]:
        print(f"PASS {puzzle.id}: {puzzle.title}")
        return 0
    print(f"FAIL {puzzle.id}: {puzzle.title}")
    if outcome["error"]:
        print(outcome["error"])
    print("--- output ---")
    sys.stdout.write(outcome["output"])
    if outcome["expected"] is not None:
        print("--- expected ---")
        sys.stdout.write(outcome["expected"])
    return 1


def needs_more_input(source: str) -> bool:
    """True while `source` has an unclosed block or quoted literal."""
    try:
        lines = logical_lines(source)
    except UnterminatedLiteral:
        return True
    except StructuralError as e:
        return e.message.startswith(("unclosed", "unterminated"))
    depth = 0
    for line in lines:
        if block_opener(line) is not None:
            depth += 1
        elif is_terminator(line):
            depth -= 1
    return depth > 0


def repl():
    print("rubylet REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runner = ScriptRunner()
    session = runner.new_session()
    buffer = []
    while True:
        try:
            raw = input(".. " if buffer else ">> ")
        except EOFError:
            print("\nExiting.")
            break
        if not buffer and raw.strip() == "exit":
            break
        if not buffer and not raw.strip():
            continue
        buffer.append(raw)
        source = "\n".join(buffer)
        if needs_more_input(source):
            continue
        buffer = []
        result = runner.handle_script(source, session)
        sys.stdout.write(result.output)
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        print("=> " + session.printer.pformat(result.value))


def main(argv=None) -> int:
    """Run a script file, grade a solution with --check, or start the REPL."""
    parser = argparse.ArgumentParser(prog="rubylet", description="Run rubylet scripts.")
    parser.add_argument("file", nargs="?", help="script to run")
    parser.add_argument("--check", nargs=3, metavar=("CATALOG", "ID", "FILE"),
                        help="grade FILE against puzzle ID of CATALOG")
    args = parser.parse_args(argv)
    if args.check:
        return check_file(*args.check)
    if args.file:
        return run_script_file(args.file)
    repl()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
