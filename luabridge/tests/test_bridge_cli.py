import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from luabridge.cli import main


def test_cli_executes_inline_code(capsys):
    assert main(["-e", "print(1 + 1)"]) == 0
    assert capsys.readouterr().out.strip() == "2"


def test_cli_reports_script_errors(capsys):
    assert main(["-e", "error('boom')"]) == 1
    err = capsys.readouterr().err
    assert "Lua execution failed" in err
    assert "boom" in err


def test_cli_runs_script_files(tmp_path, capsys):
    script = tmp_path / "answer.lua"
    script.write_text("print('running')\nreturn 40 + 2, 'done'\n", encoding="utf-8")
    assert main([str(script), "--print-output"]) == 0
    assert capsys.readouterr().out.splitlines() == ["running", "42", "done"]


def test_cli_imports_types(capsys):
    code = main(["--import-type", "datetime.date", "-e", "print(date(2024, 2, 29):isoformat())"])
    assert code == 0
    assert capsys.readouterr().out.strip() == "2024-02-29"


def test_cli_rejects_missing_input(capsys):
    with pytest.raises(SystemExit):
        main([])
    assert "missing script" in capsys.readouterr().err


def test_cli_reports_missing_files(tmp_path, capsys):
    assert main([str(tmp_path / "nope.lua")]) == 1
    assert "does not exist" in capsys.readouterr().err
