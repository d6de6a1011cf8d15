"""
Rainmeter process control.

Rainmeter keeps a hidden control window for its lifetime. Destroying that
window is how the installer asks a running Rainmeter to exit before its
folders are modified. Once installation is done Rainmeter is started again
through PowerShell, and a bang is sent to load the package's skin or layout.
"""

from __future__ import annotations

import ctypes
import logging
import subprocess
import sys
import time
from pathlib import Path

_log = logging.getLogger(__name__)

CONTROL_WINDOW_CLASS = "DummyRainWClass"
CONTROL_WINDOW_TITLE = "Rainmeter control window"
HOST_EXE_NAME = "Rainmeter.exe"

CLOSE_TIMEOUT_MS = 5000
START_DELAY_SECONDS = 1.0

WM_DESTROY = 0x0002
STILL_ACTIVE = 259
PROCESS_TERMINATE = 0x0001
PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
SYNCHRONIZE = 0x00100000


def close_host_if_running() -> tuple[bool, bool]:
    """Ask a running Rainmeter to exit and wait for it.

    Returns ``(stopped, was_running)``. ``stopped`` is False if the process
    could not be opened or is still alive after ``CLOSE_TIMEOUT_MS``.
    Rainmeter only exists on Windows; elsewhere it is never running.
    """
    if sys.platform != "win32":
        return True, False

    from ctypes import wintypes

    user32 = ctypes.windll.user32
    kernel32 = ctypes.windll.kernel32
    user32.FindWindowW.argtypes = [wintypes.LPCWSTR, wintypes.LPCWSTR]
    user32.FindWindowW.restype = wintypes.HWND
    user32.GetWindowThreadProcessId.argtypes = [wintypes.HWND, ctypes.POINTER(wintypes.DWORD)]
    user32.GetWindowThreadProcessId.restype = wintypes.DWORD
    user32.PostMessageW.argtypes = [wintypes.HWND, wintypes.UINT, wintypes.WPARAM, wintypes.LPARAM]
    user32.PostMessageW.restype = wintypes.BOOL
    kernel32.OpenProcess.argtypes = [wintypes.DWORD, wintypes.BOOL, wintypes.DWORD]
    kernel32.OpenProcess.restype = wintypes.HANDLE
    kernel32.WaitForSingleObject.argtypes = [wintypes.HANDLE, wintypes.DWORD]
    kernel32.WaitForSingleObject.restype = wintypes.DWORD
    kernel32.GetExitCodeProcess.argtypes = [wintypes.HANDLE, ctypes.POINTER(wintypes.DWORD)]
    kernel32.GetExitCodeProcess.restype = wintypes.BOOL
    kernel32.CloseHandle.argtypes = [wintypes.HANDLE]
    kernel32.CloseHandle.restype = wintypes.BOOL

    hwnd = user32.FindWindowW(CONTROL_WINDOW_CLASS, CONTROL_WINDOW_TITLE)
    if not hwnd:
        return True, False

    process_id = wintypes.DWORD(0)
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(process_id))

    handle = kernel32.OpenProcess(
        PROCESS_TERMINATE | PROCESS_QUERY_LIMITED_INFORMATION | SYNCHRONIZE,
        False,
        process_id.value,
    )
    if not handle:
        _log.error("Error opening Rainmeter process: %s", ctypes.WinError())
        return False, True

    exit_code = wintypes.DWORD(0)
    try:
        user32.PostMessageW(hwnd, WM_DESTROY, 0, 0)
        kernel32.WaitForSingleObject(handle, CLOSE_TIMEOUT_MS)
        kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code))
    finally:
        kernel32.CloseHandle(handle)

    return exit_code.value != STILL_ACTIVE, True


def build_load_bang(load_type: str | None, load: str | None) -> str | None:
    """Return the bang that loads the package's skin or layout, if any.

    For skins ``load`` is ``config\\file.ini`` and is split at the last
    backslash into the config and the file to activate.
    """
    if not load:
        return None
    if load_type == "Skin":
        config, _, filename = load.replace("/", "\\").rpartition("\\")
        if not config:
            return f'[!ActivateConfig "{filename}"]'
        return f'[!ActivateConfig "{config}" "{filename}"]'
    if load_type == "Layout":
        return f'[!LoadLayout "{load}"]'
    return None


def build_start_command(exe: Path, bang: str | None = None) -> list[str]:
    command = ["powershell", "Start-Process", f'"{exe}"']
    if bang:
        command += ["-ArgumentList", f"@('{bang}')"]
    return command


def start_host(
    application_path: str | Path,
    load_type: str | None = None,
    load: str | None = None,
) -> bool:
    """Start Rainmeter and load the package's skin or layout.

    Failures are logged and reported through the return value only; by the
    time Rainmeter is started the installation itself is complete.
    """
    exe = Path(application_path) / HOST_EXE_NAME

    try:
        subprocess.run(build_start_command(exe), check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        _log.error("Error starting Rainmeter: %s", e)
        return False

    bang = build_load_bang(load_type, load)
    if bang is None:
        return True

    time.sleep(START_DELAY_SECONDS)  # let Rainmeter create its window first
    try:
        subprocess.run(build_start_command(exe, bang), check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        _log.error("Error starting Rainmeter with commands: %s", e)
        return False
    return True
