"""
Shared fixtures and helpers for the RmSkin installer test suite.
"""

import zipfile
from unittest.mock import patch

import pytest

from skin_installer import HostSettings


@pytest.fixture
def make_zip(tmp_path):
    """Return a builder that writes {member: data} into tmp_path/<name>."""

    def _make(name, members):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for member, data in members.items():
                zf.writestr(member, data)
        return path

    return _make


@pytest.fixture
def host(tmp_path):
    """A fake Rainmeter installation laid out under tmp_path.

    Paths match what main.default_host_paths() derives from APPDATA and
    PROGRAMFILES pointing at tmp_path/AppData and tmp_path/Program Files.
    """
    app = tmp_path / "Program Files" / "Rainmeter"
    settings = tmp_path / "AppData" / "Rainmeter"
    skins = tmp_path / "Documents" / "Rainmeter" / "Skins"
    for d in (app, settings, skins):
        d.mkdir(parents=True)
    (settings / "Rainmeter.ini").write_text(
        f"[Rainmeter]\nSkinPath={skins}\n", encoding="utf-16"
    )
    return HostSettings(skins_path=skins, application_path=app, settings_path=settings)


@pytest.fixture
def mock_host_process():
    """Patch Rainmeter stop/start so no process is looked up or launched."""
    with patch("skin_installer.SkinInstaller.stop_host") as stop, patch(
        "skin_installer.SkinInstaller.start_host", return_value=True
    ) as start:
        yield stop, start
