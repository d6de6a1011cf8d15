#!/usr/bin/env python3
"""RmSkin Installer - Entry Point"""

import argparse
import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from install_errors import InstallError
from skin_installer import SkinInstaller, read_host_settings, validate_host

__version__ = "0.1.0"

APP_NAME = "RmSkinInstaller"


def setup_logging() -> tuple[logging.Logger, Path]:
    log_dir = Path(os.environ.get("APPDATA", "~")).expanduser() / APP_NAME
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "rmskininstaller.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))

    # Progress on stdout, errors on stderr
    stdout = logging.StreamHandler(sys.stdout)
    stdout.setLevel(logging.INFO)
    stdout.addFilter(lambda record: record.levelno < logging.ERROR)
    stderr = logging.StreamHandler(sys.stderr)
    stderr.setLevel(logging.ERROR)
    for console in (stdout, stderr):
        console.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for old in [h for h in root.handlers if getattr(h, "_rmskin_handler", False)]:
        root.removeHandler(old)
        old.close()
    for new in (handler, stdout, stderr):
        new._rmskin_handler = True
        root.addHandler(new)

    return logging.getLogger("rmskininstaller"), log_dir


def install_crash_handler(logger: logging.Logger):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog=APP_NAME, description="Command-line Rainmeter skin installer"
    )
    parser.add_argument("--skin", required=True, help=".rmskin package to install")
    parser.add_argument(
        "--keepvariables",
        action="store_true",
        help="keep current variable values when the package merges skins",
    )
    parser.add_argument(
        "--nobackup", action="store_true", help="do not back up skins that are replaced"
    )
    parser.add_argument("--skins-dir", help="override the skins folder from Rainmeter.ini")
    parser.add_argument("--settings-dir", help="Rainmeter settings folder (default %%APPDATA%%\\Rainmeter)")
    parser.add_argument("--app-dir", help="Rainmeter install folder (default %%PROGRAMFILES%%\\Rainmeter)")
    parser.add_argument("--no-restart", action="store_true", help="do not start Rainmeter afterwards")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def default_host_paths() -> tuple[Path, Path]:
    """Return ``(settings_path, application_path)`` of a standard install."""
    return (
        Path(os.environ.get("APPDATA", "")) / "Rainmeter",
        Path(os.environ.get("PROGRAMFILES", "")) / "Rainmeter",
    )


def main(argv=None) -> int:
    args = parse_args(argv)

    logger, log_dir = setup_logging()
    install_crash_handler(logger)
    logger.debug("Starting %s %s, log dir %s", APP_NAME, __version__, log_dir)

    skinfile = Path(args.skin)
    if not skinfile.is_file():
        logger.error("Skin file not found: %s", skinfile)
        return 1

    settings_path, application_path = default_host_paths()
    if args.settings_dir:
        settings_path = Path(args.settings_dir)
    if args.app_dir:
        application_path = Path(args.app_dir)

    issues = validate_host(settings_path, application_path)
    if issues:
        for issue in issues:
            logger.error(issue)
        logger.error("Rainmeter not installed or not run for the first time.")
        return 1

    logger.info("Reading Rainmeter settings...")
    try:
        host = read_host_settings(settings_path, application_path, args.skins_dir)
    except InstallError as e:
        logger.error("Error reading Rainmeter settings: %s", e)
        return 1

    installer = SkinInstaller(skinfile, host, log_callback=logger.info)
    ok, msg = installer.install(
        keep_variables=args.keepvariables,
        backup=not args.nobackup,
        restart_host=not args.no_restart,
    )
    if not ok:
        logger.error(msg)
        return 1

    logger.info(msg)
    return 0


if __name__ == "__main__":
    sys.exit(main())
