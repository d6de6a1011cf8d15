"""
Manifest schema for .rmskin packages.

Every package carries an ``RMSKIN.ini`` at the root of the archive. Its
``[rmskin]`` section tells the installer what to load once installation is
done, which variable files hold user settings, and whether skins are merged
into the existing folders or replace them.

Archive layout example:

    Demo_1.0.rmskin
    ├── RMSKIN.ini
    ├── Skins/
    │   └── Demo/            <- one folder per skin, merged or replaced as a whole
    │       ├── Demo.ini
    │       └── @Resources/
    │           └── Variables.inc
    ├── Layouts/
    │   └── DemoLayout/
    │       └── Rainmeter.ini
    └── Plugins/
        ├── 32bit/           <- never installed
        └── 64bit/
            └── Foo.dll

Manifest:

    [rmskin]
    Name=Demo
    Author=someone
    Version=1.0
    LoadType=Skin
    Load=Demo\\Demo.ini
    VariableFiles=Demo\\@Resources\\Variables.inc | Demo\\Other.inc
    MergeSkins=0
"""

from __future__ import annotations

import configparser
import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ini_reader import find_section
from install_errors import ConfigParseError

MANIFEST_FILENAME = "RMSKIN.ini"
MANIFEST_SECTION = "rmskin"
VARIABLE_FILES_DELIMITER = " | "
LOAD_TYPES = ("Skin", "Layout")

_log = logging.getLogger(__name__)


class PackageManifest(BaseModel):
    """Parsed ``[rmskin]`` section of RMSKIN.ini.

    Field aliases are the key names used in the file. Only ``LoadType``,
    ``Load``, ``VariableFiles`` and ``MergeSkins`` change what the installer
    does; the rest is shown to the user.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, alias="Name")
    author: str | None = Field(default=None, alias="Author")
    version: str | None = Field(default=None, alias="Version")
    minimum_rainmeter: str | None = Field(default=None, alias="MinimumRainmeter")
    minimum_windows: str | None = Field(default=None, alias="MinimumWindows")
    load_type: Literal["Skin", "Layout"] | None = Field(default=None, alias="LoadType")
    load: str | None = Field(default=None, alias="Load")
    variable_files: list[str] = Field(default_factory=list, alias="VariableFiles")
    merge_skins: bool = Field(default=False, alias="MergeSkins")

    @field_validator("load_type", mode="before")
    @classmethod
    def _check_load_type(cls, v):
        if v is None or v == "":
            return None
        if v not in LOAD_TYPES:
            _log.warning(
                "Unknown LoadType %r in %s, nothing will be loaded after install.",
                v, MANIFEST_FILENAME,
            )
            return None
        return v

    @field_validator("load", mode="before")
    @classmethod
    def _empty_load(cls, v):
        return v or None

    @field_validator("variable_files", mode="before")
    @classmethod
    def _split_variable_files(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [p.strip() for p in v.split(VARIABLE_FILES_DELIMITER) if p.strip()]
        return v

    @field_validator("merge_skins", mode="before")
    @classmethod
    def _parse_merge_flag(cls, v):
        if isinstance(v, bool):
            return v
        return v == "1"

    def describe(self) -> str:
        label = self.name or "(unnamed package)"
        if self.version:
            label += f" {self.version}"
        if self.author:
            label += f" by {self.author}"
        return label


def parse_manifest(config: configparser.ConfigParser) -> PackageManifest:
    """Build a PackageManifest from a parsed RMSKIN.ini.

    Raises ``ConfigParseError`` if the ``[rmskin]`` section is missing or a
    value does not validate.
    """
    section = find_section(config, MANIFEST_SECTION)
    if section is None:
        raise ConfigParseError(
            f"{MANIFEST_FILENAME} has no [{MANIFEST_SECTION}] section"
        )
    try:
        return PackageManifest.model_validate(dict(config.items(section)))
    except ValidationError as e:
        raise ConfigParseError(f"Invalid {MANIFEST_FILENAME}: {e}") from e
