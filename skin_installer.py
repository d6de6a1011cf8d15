"""
RmSkin Installer - Core Logic

Handles archive extraction, entry classification, and merging skins, layouts
and plugins into a Rainmeter installation.
"""

import logging
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Callable, NamedTuple, Optional

import py7zr
import rarfile
from py7zr.exceptions import Bad7zFile

import host_process
from ini_reader import find_section, read_config, read_variables, write_variables
from install_errors import (
    DestinationIsFile,
    HostBusy,
    InstallError,
    IOFailure,
    ManifestMissing,
    SourceNotDirectory,
)
from manifest_schema import MANIFEST_FILENAME, PackageManifest, parse_manifest

_log = logging.getLogger(__name__)

HOST_SETTINGS_FILENAME = "Rainmeter.ini"
HOST_SETTINGS_SECTION = "Rainmeter"
BACKUP_DIRNAME = "@Backup"

SKINS_COMPONENT = "Skins"
LAYOUTS_COMPONENT = "Layouts"
PLUGINS_COMPONENT = "Plugins"
PLUGIN_ARCH_DIR = "64bit"
PLUGIN_EXTENSION = "dll"

_ARCHIVE_ERRORS = (OSError, zipfile.BadZipFile, Bad7zFile, rarfile.Error)


# ── Archive entry classification ─────────────────────────────────────


class ClassifiedEntry(NamedTuple):
    component: str  # "Skins", "Layouts", "Plugins", or "" at the root
    name: str  # folder under the component, or the bare root entry
    extension: str  # extension of the last segment, without the dot


def _extension(segment: str) -> str:
    return PurePosixPath(segment).suffix[1:]


def classify_entry(item: str) -> ClassifiedEntry:
    """Map an archive path to ``(component, name, extension)``.

    ``Skins/Demo/Demo.ini``   -> ("Skins", "Demo", "ini")
    ``Demo/readme.txt``       -> ("", "Demo", "txt")
    ``RMSKIN.ini``            -> ("", "RMSKIN.ini", "")
    """
    parts = item.replace("\\", "/").split("/")
    if len(parts) > 2:
        return ClassifiedEntry(parts[0], parts[1], _extension(parts[-1]))
    if len(parts) == 2:
        return ClassifiedEntry("", parts[0], _extension(parts[1]))
    return ClassifiedEntry("", parts[0], "")


def _is_enclosed(item: str) -> bool:
    """True if an archive path stays inside the extraction directory."""
    if PureWindowsPath(item).drive:
        return False
    path = PurePosixPath(item.replace("\\", "/"))
    return not path.is_absolute() and ".." not in path.parts


def _relative_path(item: str) -> Path:
    """Turn a backslash- or slash-separated relative path into a local Path."""
    return Path(*PurePosixPath(item.replace("\\", "/")).parts)


# ── Merge copy ────────────────────────────────────────────────────────


def copy_dir_all(src: str | Path, dest: str | Path):
    """Copy the tree at ``src`` into ``dest``.

    Missing directories are created and existing files are overwritten.
    Files that only exist under ``dest`` are left alone, so applying the
    same copy twice gives the same result as applying it once.
    """
    src = Path(src)
    dest = Path(dest)
    if not src.is_dir():
        raise SourceNotDirectory(f"Source is not a directory: {src}")
    if dest.is_file():
        raise DestinationIsFile(f"Destination is a file: {dest}")

    try:
        dest.mkdir(parents=True, exist_ok=True)
        entries = sorted(src.iterdir())
    except OSError as e:
        raise IOFailure(f"Could not create {dest}: {e}") from e

    for entry in entries:
        target = dest / entry.name
        if entry.is_dir():
            copy_dir_all(entry, target)
            continue
        if target.is_dir():
            raise IOFailure(f"Cannot overwrite directory {target} with a file")
        try:
            shutil.copy2(entry, target)
        except OSError as e:
            raise IOFailure(f"Could not copy {entry} -> {target}: {e}") from e


# ── Host settings ─────────────────────────────────────────────────────


@dataclass
class HostSettings:
    """Where Rainmeter keeps its skins, its program files and its settings."""

    skins_path: Path  # %USERPROFILE%\Documents\Rainmeter\Skins
    application_path: Path  # %PROGRAMFILES%\Rainmeter
    settings_path: Path  # %APPDATA%\Rainmeter

    @property
    def settings_file(self) -> Path:
        return self.settings_path / HOST_SETTINGS_FILENAME

    @property
    def plugins_path(self) -> Path:
        return self.settings_path / PLUGINS_COMPONENT

    @property
    def layouts_path(self) -> Path:
        return self.settings_path / LAYOUTS_COMPONENT

    @property
    def backup_path(self) -> Path:
        return self.skins_path / BACKUP_DIRNAME


def default_skins_path() -> Path:
    return Path(os.environ.get("USERPROFILE", "")) / "Documents" / "Rainmeter" / "Skins"


def validate_host(settings_path: str | Path, application_path: str | Path) -> list[str]:
    issues = []
    if not Path(application_path).is_dir():
        issues.append(f"Rainmeter install directory not found: {application_path}")
    if not (Path(settings_path) / HOST_SETTINGS_FILENAME).is_file():
        issues.append(
            f"Rainmeter settings not found: {Path(settings_path) / HOST_SETTINGS_FILENAME}"
        )
    return issues


def read_host_settings(
    settings_path: str | Path,
    application_path: str | Path,
    skins_path: str | Path | None = None,
) -> HostSettings:
    """Read Rainmeter.ini and resolve the skins directory.

    ``SkinPath`` from the ``[Rainmeter]`` section is used unless
    ``skins_path`` overrides it; without either the documented default under
    the user profile applies. The skins directory is created if missing.
    """
    settings_path = Path(settings_path)
    config = read_config(settings_path / HOST_SETTINGS_FILENAME)

    if skins_path is None:
        section = find_section(config, HOST_SETTINGS_SECTION)
        if section is not None:
            skins_path = config.get(section, "SkinPath", fallback=None) or None
    skins_path = Path(skins_path) if skins_path else default_skins_path()

    if not skins_path.is_dir():
        try:
            skins_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(
                f"Rainmeter skins folder not found and could not be created: {e}"
            ) from e

    return HostSettings(
        skins_path=skins_path,
        application_path=Path(application_path),
        settings_path=settings_path,
    )


# ── Install plan ──────────────────────────────────────────────────────


@dataclass
class InstallPlan:
    """State of one installation run."""

    skinfile: Path
    temp_dir: Path | None = None  # staging directory, created by extract()
    was_running: bool = False
    merge_skins: bool = False
    plugins: list[str] = field(default_factory=list)  # 64-bit plugin filenames
    skins: list[str] = field(default_factory=list)  # folder names under Skins/
    layouts: list[str] = field(default_factory=list)  # folder names under Layouts/
    variable_files: list[str] = field(default_factory=list)
    load_type: str | None = None
    load: str | None = None
    manifest: PackageManifest | None = None


class SkinInstaller:
    """
    Installs one .rmskin package into a Rainmeter installation.

    Workflow:
        1. extract() to unpack the archive into a staging directory
        2. read_options() to load RMSKIN.ini
        3. stop_host() so Rainmeter is not holding any of its files
        4. install_plugins() and install_layouts()
        5. keep_variables(), then merge_skins(), or create_backup() and install_skins()
        6. cleanup() to remove the staging directory

    install() runs the whole sequence.
    """

    def __init__(
        self,
        skinfile: str | Path,
        host: HostSettings,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.host = host
        self.plan = InstallPlan(skinfile=Path(skinfile))
        self._log_cb = log_callback or print
        self._stage = "starting"

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    def _enter(self, stage: str, msg: str):
        self._stage = stage
        self.log(msg)

    # ── Archive access ────────────────────────────────────────────────

    @staticmethod
    def _list_archive_names(filepath: Path) -> list[str]:
        ext = filepath.suffix.lower()
        if ext == ".7z":
            with py7zr.SevenZipFile(filepath, "r") as sz:
                names = sz.getnames()
        elif ext == ".rar":
            with rarfile.RarFile(filepath, "r") as rf:
                names = [info.filename for info in rf.infolist()]
        else:
            # .rmskin packages are zip archives with a short footer appended
            with zipfile.ZipFile(filepath, "r") as zf:
                names = zf.namelist()

        return [n.replace("\\", "/") for n in names]

    @staticmethod
    def _extract_from_archive(filepath: Path, members: list[str], dest: Path):
        """Extract ``members`` (as listed by ``_list_archive_names``) to ``dest``."""
        ext = filepath.suffix.lower()
        wanted = set(members)
        if ext == ".7z":
            with py7zr.SevenZipFile(filepath, "r") as sz:
                targets = [n for n in sz.getnames() if n.replace("\\", "/") in wanted]
                sz.extract(dest, targets=targets)
        elif ext == ".rar":
            with rarfile.RarFile(filepath, "r") as rf:
                for info in rf.infolist():
                    if info.filename.replace("\\", "/") in wanted:
                        rf.extract(info, dest)
        else:
            with zipfile.ZipFile(filepath, "r") as zf:
                for info in zf.infolist():
                    name = info.filename.replace("\\", "/")
                    if name in wanted:
                        info.filename = name
                        zf.extract(info, dest)

    # ── Stages ────────────────────────────────────────────────────────

    def extract(self) -> InstallPlan:
        """Classify the archive entries and unpack them into a staging directory.

        Raises ``ManifestMissing`` before anything is written if the archive
        has no RMSKIN.ini at its root.
        """
        plan = self.plan
        try:
            names = self._list_archive_names(plan.skinfile)
        except _ARCHIVE_ERRORS as e:
            raise IOFailure(f"Error reading {plan.skinfile.name}: {e}") from e

        members: list[str] = []
        skins: set[str] = set()
        layouts: set[str] = set()
        plugins: set[str] = set()
        found_manifest = False

        for name in names:
            if not _is_enclosed(name):
                self.log(f"  Skipping entry outside the package: {name}")
                continue

            component, entry_name, extension = classify_entry(name)
            if component == SKINS_COMPONENT and entry_name:
                skins.add(entry_name)
            elif component == LAYOUTS_COMPONENT and entry_name:
                layouts.add(entry_name)
            elif component == PLUGINS_COMPONENT:
                if entry_name == PLUGIN_ARCH_DIR and extension.lower() == PLUGIN_EXTENSION:
                    plugins.add(PurePosixPath(name).name)
                else:
                    if not name.endswith("/"):
                        self.log(f"  Skipping plugin entry: {name}")
                    continue
            elif not component and entry_name == MANIFEST_FILENAME:
                found_manifest = True
            members.append(name)

        if not found_manifest:
            raise ManifestMissing(f"{MANIFEST_FILENAME} not found in {plan.skinfile.name}")

        plan.skins = sorted(skins)
        plan.layouts = sorted(layouts)
        plan.plugins = sorted(plugins)

        try:
            plan.temp_dir = Path(tempfile.mkdtemp(prefix="rmskin-"))
        except OSError as e:
            raise IOFailure(f"Error creating staging directory: {e}") from e

        self.log(f"  Extracting {len(members)} entries to: {plan.temp_dir}")
        try:
            self._extract_from_archive(plan.skinfile, members, plan.temp_dir)
        except _ARCHIVE_ERRORS as e:
            raise IOFailure(f"Error extracting {plan.skinfile.name}: {e}") from e

        self.log(
            f"  Found {len(plan.skins)} skin(s), {len(plan.layouts)} layout(s), "
            f"{len(plan.plugins)} plugin(s)"
        )
        return plan

    def read_options(self) -> PackageManifest:
        plan = self.plan
        manifest = parse_manifest(read_config(plan.temp_dir / MANIFEST_FILENAME))
        plan.manifest = manifest
        plan.load_type = manifest.load_type
        plan.load = manifest.load
        plan.variable_files = list(manifest.variable_files)
        plan.merge_skins = manifest.merge_skins
        self.log(f"  Package: {manifest.describe()}")
        return manifest

    def stop_host(self):
        stopped, was_running = host_process.close_host_if_running()
        self.plan.was_running = was_running
        if not stopped:
            raise HostBusy("Rainmeter is running. Please close Rainmeter before installing.")

    def start_host(self) -> bool:
        return host_process.start_host(
            self.host.application_path, self.plan.load_type, self.plan.load
        )

    def install_plugins(self):
        if not self.plan.plugins:
            self.log("  No 64-bit plugins in package")
            return
        # TODO: compare plugin file versions before overwriting an installed plugin
        copy_dir_all(
            self.plan.temp_dir / PLUGINS_COMPONENT / PLUGIN_ARCH_DIR,
            self.host.plugins_path,
        )
        for plugin in self.plan.plugins:
            self.log(f"  Installed plugin: {plugin}")

    def install_layouts(self):
        if not self.plan.layouts:
            self.log("  No layouts in package")
            return
        copy_dir_all(self.plan.temp_dir / LAYOUTS_COMPONENT, self.host.layouts_path)
        for layout in self.plan.layouts:
            self.log(f"  Installed layout: {layout}")

    def keep_variables(self):
        """Carry ``[Variables]`` values from installed variable files into the
        staged copies, so the copy that follows does not reset them."""
        for varfile in self.plan.variable_files:
            if not _is_enclosed(varfile):
                self.log(f"  WARNING: Ignoring variable file outside the skins folder: {varfile}")
                continue
            relative = _relative_path(varfile)
            oldfile = self.host.skins_path / relative
            newfile = self.plan.temp_dir / SKINS_COMPONENT / relative

            if not oldfile.is_file():
                continue
            if not newfile.parent.is_dir():
                self.log(f"  WARNING: {varfile} has no folder in the package, skipping")
                continue

            keys, values = read_variables(oldfile)
            write_variables(newfile, zip(keys, values))
            self.log(f"  Kept {len(keys)} variable(s) from {varfile}")

    def create_backup(self):
        """Move each installed skin that is about to be replaced into @Backup."""
        backup_dir = self.host.backup_path
        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailure(f"Error creating backup directory: {e}") from e

        for skin in self.plan.skins:
            live = self.host.skins_path / skin
            if not live.is_dir():
                continue
            copy_dir_all(live, backup_dir / skin)
            try:
                shutil.rmtree(live)
            except OSError as e:
                raise IOFailure(f"Error removing directory {live}: {e}") from e
            self.log(f"  Backed up: {skin} -> {BACKUP_DIRNAME}\\{skin}")

    def _copy_skins(self, verb: str):
        for skin in self.plan.skins:
            copy_dir_all(
                self.plan.temp_dir / SKINS_COMPONENT / skin,
                self.host.skins_path / skin,
            )
            self.log(f"  {verb}: {skin}")

    def install_skins(self):
        self._copy_skins("Installed")

    def merge_skins(self):
        self._copy_skins("Merged")

    def cleanup(self):
        temp_dir = self.plan.temp_dir
        if temp_dir is None or not temp_dir.exists():
            return
        try:
            shutil.rmtree(temp_dir)
        except OSError as e:
            raise IOFailure(f"Could not remove {temp_dir}: {e}") from e

    # ── Install ───────────────────────────────────────────────────────

    def _run_stages(self, keep_variables: bool, backup: bool, restart_host: bool):
        plan = self.plan

        self._enter("extracting skin", f"Extracting {plan.skinfile.name}...")
        self.extract()

        self._enter("reading options", "Reading skin options...")
        self.read_options()

        self._enter("closing Rainmeter", "Closing Rainmeter if active...")
        self.stop_host()

        self._enter("installing plugins", "Installing plugins...")
        self.install_plugins()

        self._enter("installing layouts", "Installing layouts...")
        self.install_layouts()

        if plan.merge_skins:
            self.log("Merging skins...")
            if keep_variables:
                self._enter("keeping variables", "Keeping variables...")
                self.keep_variables()
            self._enter("merging skins", "Copying skins...")
            self.merge_skins()
        else:
            self._enter("keeping variables", "Restoring variables...")
            self.keep_variables()
            if backup:
                self._enter("creating backup", "Creating backup...")
                self.create_backup()
            self._enter("installing skins", "Installing skins...")
            self.install_skins()

        if restart_host:
            self._enter("starting Rainmeter", "Starting Rainmeter...")
            if not self.start_host():
                self.log("  WARNING: Rainmeter could not be started, start it manually.")

    def install(
        self,
        keep_variables: bool = False,
        backup: bool = True,
        restart_host: bool = True,
    ) -> tuple[bool, str]:
        """Run every stage in order and report ``(success, message)``.

        ``keep_variables`` only matters for packages that merge skins;
        replacing installs always carry variable values over. The staging
        directory is removed whether or not the stages succeed; nothing that
        was already copied is undone.
        """
        failure = None
        try:
            self._run_stages(keep_variables, backup, restart_host)
        except InstallError as e:
            failure = f"Error {self._stage}: {e}"
            _log.debug("Install of %s failed while %s", self.plan.skinfile, self._stage, exc_info=True)
        finally:
            self.log("Cleaning up...")
            try:
                self.cleanup()
                cleanup_error = None
            except IOFailure as e:
                cleanup_error = f"Error cleaning up: {e}"
                self.log(cleanup_error)

        if failure:
            return False, failure
        if cleanup_error:
            return False, cleanup_error

        plan = self.plan
        return (
            True,
            f"Installed {len(plan.skins)} skin(s), {len(plan.layouts)} layout(s) "
            f"and {len(plan.plugins)} plugin(s) from {plan.skinfile.name}",
        )
