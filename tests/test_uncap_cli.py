import importlib.util
import sys
import types
import uuid
from pathlib import Path

import pytest

from uncap.uncap_dump import disable_dump_bypass


def _load_cli_module():
    """Dynamically load the top-level uncap.py launcher as a module with a unique name."""
    cli_path = Path(__file__).resolve().parents[1] / "uncap.py"
    mod_name = f"uncap_cli_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(cli_path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


class Safe:
    __pin = 42

    def __init__(self):
        self.__owner = "root"


@pytest.fixture(autouse=True)
def fake_target(monkeypatch):
    module = types.ModuleType("uncap_fake_target")
    module.Safe = Safe
    module.instance = Safe()
    monkeypatch.setitem(sys.modules, "uncap_fake_target", module)
    yield module
    # main() enables the dump bypass for the whole process.
    disable_dump_bypass()


def _feed(monkeypatch, cli, lines):
    it = iter(lines)

    async def fake_ainput(prompt: str) -> str:
        return next(it)
    monkeypatch.setattr(cli, "ainput", fake_ainput)


@pytest.mark.asyncio
async def test_repl_exit_immediately(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py"])
    _feed(monkeypatch, cli, ["exit"])

    await cli.main()
    out = capsys.readouterr().out
    assert "uncap explorer v0.1" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out


@pytest.mark.asyncio
async def test_repl_evaluates_against_loaded_class(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py", "uncap_fake_target:Safe"])
    _feed(monkeypatch, cli, [
        "x = int(target.__pin)",
        "x + 1",
        "target.__nope",
        "",
    ])

    await cli.main()
    out, err = capsys.readouterr()
    assert "43" in out
    assert "Error: MissingMemberError:" in err
    assert "Exiting." in out


@pytest.mark.asyncio
async def test_repl_blank_lines_are_skipped(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py"])
    _feed(monkeypatch, cli, ["   \n", "1 + 1\n", "exit\n"])

    await cli.main()
    out = capsys.readouterr().out
    assert "2" in out


@pytest.mark.asyncio
async def test_expression_mode_dumps_shims(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py", "uncap_fake_target:Safe", "target.__pin"])

    await cli.main()
    out = capsys.readouterr().out
    assert "Safe.__pin: int" in out
    assert "uncap explorer" not in out


@pytest.mark.asyncio
async def test_module_target_is_wrapped_as_instance(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py", "uncap_fake_target", "str(target.instance.__owner)"])

    await cli.main()
    assert "'root'" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_expression_errors_exit_nonzero(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py", "uncap_fake_target:Safe", "target.__nope"])

    with pytest.raises(SystemExit) as exc:
        await cli.main()
    assert exc.value.code == 1
    assert "Error: MissingMemberError:" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_unknown_target_exits(monkeypatch, capsys):
    cli = _load_cli_module()
    monkeypatch.setattr(sys, "argv", ["uncap.py", "uncap_no_such_module_abc"])

    with pytest.raises(SystemExit):
        await cli.main()
    err = capsys.readouterr().err
    assert "cannot load 'uncap_no_such_module_abc'" in err
    assert "usage:" in err


def test_load_target_kinds():
    cli = _load_cli_module()
    assert cli.load_target("uncap_fake_target:Safe").__pin == 42
    assert str(cli.load_target("uncap_fake_target").instance.__owner) == "root"


def test_evaluate_statement_and_expression():
    cli = _load_cli_module()
    ns = cli.make_namespace()
    assert cli.evaluate("y = 5", ns) is None
    assert cli.evaluate("y * 2", ns) == 10
