import logging
import sys
import zipfile

import pytest

import main


@pytest.fixture
def env(tmp_path, host, monkeypatch, mock_host_process):
    """Point the standard install locations at the fake host."""
    monkeypatch.setenv("APPDATA", str(tmp_path / "AppData"))
    monkeypatch.setenv("PROGRAMFILES", str(tmp_path / "Program Files"))
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield host

    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_rmskin_handler", False)]:
        root.removeHandler(handler)
        handler.close()


def _package(tmp_path, members):
    path = tmp_path / "Demo.rmskin"
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


def test_main_installs(env, tmp_path, capsys):
    skin = _package(
        tmp_path,
        {"RMSKIN.ini": "[rmskin]\nName=Demo\nMergeSkins=0\n", "Skins/Demo/Demo.ini": "[Rainmeter]\n"},
    )

    assert main.main(["--skin", str(skin), "--no-restart"]) == 0

    assert (env.skins_path / "Demo" / "Demo.ini").is_file()
    out = capsys.readouterr().out
    assert "Installing skins..." in out
    assert (tmp_path / "AppData" / main.APP_NAME / "rmskininstaller.log").is_file()


def test_main_missing_manifest_fails(env, tmp_path, capsys):
    skin = _package(tmp_path, {"Skins/Demo/Demo.ini": ""})

    assert main.main(["--skin", str(skin)]) == 1

    assert "RMSKIN.ini not found" in capsys.readouterr().err
    assert not (env.skins_path / "Demo").exists()


def test_main_missing_skin_file(env, tmp_path, capsys):
    assert main.main(["--skin", str(tmp_path / "nope.rmskin")]) == 1
    assert "Skin file not found" in capsys.readouterr().err


def test_main_rainmeter_not_installed(env, tmp_path, capsys):
    skin = _package(tmp_path, {"RMSKIN.ini": "[rmskin]\n"})

    code = main.main(["--skin", str(skin), "--app-dir", str(tmp_path / "missing")])

    assert code == 1
    assert "Rainmeter not installed" in capsys.readouterr().err


def test_parse_args_flags():
    args = main.parse_args(["--skin", "x.rmskin", "--keepvariables", "--nobackup"])
    assert args.skin == "x.rmskin"
    assert args.keepvariables and args.nobackup
    assert not args.no_restart


def test_parse_args_requires_skin():
    with pytest.raises(SystemExit):
        main.parse_args([])
