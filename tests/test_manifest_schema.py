import pytest

from ini_reader import read_config
from install_errors import ConfigParseError
from manifest_schema import PackageManifest, parse_manifest


def _manifest(tmp_path, body, encoding="utf-8"):
    path = tmp_path / "RMSKIN.ini"
    path.write_text(body, encoding=encoding)
    return parse_manifest(read_config(path))


def test_full_manifest(tmp_path):
    manifest = _manifest(
        tmp_path,
        "[rmskin]\n"
        "Name=Demo\n"
        "Author=someone\n"
        "Version=1.2\n"
        "LoadType=Skin\n"
        "Load=Demo\\Demo.ini\n"
        "VariableFiles=Demo\\@Resources\\Variables.inc | Demo\\Other.inc\n"
        "MergeSkins=1\n"
        "MinimumRainmeter=4.5.0\n",
        encoding="utf-16",
    )

    assert manifest.load_type == "Skin"
    assert manifest.load == "Demo\\Demo.ini"
    assert manifest.variable_files == ["Demo\\@Resources\\Variables.inc", "Demo\\Other.inc"]
    assert manifest.merge_skins is True
    assert manifest.minimum_rainmeter == "4.5.0"
    assert manifest.describe() == "Demo 1.2 by someone"


def test_defaults_when_keys_absent(tmp_path):
    manifest = _manifest(tmp_path, "[rmskin]\nName=Demo\n")

    assert manifest.load_type is None
    assert manifest.load is None
    assert manifest.variable_files == []
    assert manifest.merge_skins is False


@pytest.mark.parametrize("raw", ["0", "true", "yes", ""])
def test_merge_skins_only_true_for_one(tmp_path, raw):
    manifest = _manifest(tmp_path, f"[rmskin]\nMergeSkins={raw}\n")
    assert manifest.merge_skins is False


def test_unknown_load_type_is_ignored(tmp_path):
    manifest = _manifest(tmp_path, "[rmskin]\nLoadType=Theme\nLoad=Something\n")

    assert manifest.load_type is None
    assert manifest.load == "Something"


def test_missing_section(tmp_path):
    with pytest.raises(ConfigParseError):
        _manifest(tmp_path, "[Other]\nName=Demo\n")


def test_model_accepts_field_names():
    manifest = PackageManifest(load_type="Layout", load="MyLayout", merge_skins=True)

    assert manifest.load_type == "Layout"
    assert manifest.merge_skins is True
    assert manifest.describe() == "(unnamed package)"
