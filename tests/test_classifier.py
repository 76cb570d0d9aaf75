"""Tests for path classification and path-derived attributes."""

from __future__ import annotations

import pytest

from p2proxy.assets import (
    AssetKind,
    CacheType,
    ComponentAttributes,
    cache_type,
    classify,
    merge_attributes,
    normalize_component_name,
    seed_attributes,
)
from p2proxy.assets.kinds import (
    bundle_extension,
    escape_uri_to_path,
    metadata_extension,
    parent_url,
    unescape_path_to_uri,
    upstream_url,
)
from p2proxy.errors import ClassificationError

HEX = "0123456789abcdef" * 4


@pytest.mark.parametrize(
    "path,expected",
    [
        ("p2.index", AssetKind.INDEX),
        ("/releases/2017-06/p2.index", AssetKind.INDEX),
        ("features/org.eclipse.rcp_4.7.0.v20170612-1255.jar", AssetKind.COMPONENT_BUNDLE),
        ("plugins/org.eclipse.core.runtime_3.13.0.jar.pack.gz", AssetKind.COMPONENT_BUNDLE),
        ("binary/org.eclipse.launcher.gtk_1.0.0", AssetKind.COMPONENT_BUNDLE),
        ("/updates/plugins/org.example_1.0.0.jar", AssetKind.COMPONENT_BUNDLE),
        ("compositeArtifacts.jar", AssetKind.COMPOSITE_ARTIFACTS),
        ("compositeArtifacts.xml", AssetKind.COMPOSITE_ARTIFACTS),
        ("releases/compositeContent.xml", AssetKind.COMPOSITE_CONTENT),
        ("content.jar", AssetKind.CONTENT_METADATA),
        ("content.xml.xz", AssetKind.CONTENT_METADATA),
        ("child/artifacts.xml", AssetKind.ARTIFACTS_METADATA),
        ("artifacts.xml.xz", AssetKind.ARTIFACTS_METADATA),
        ("https/download.eclipse.org/releases/artifacts.jar", AssetKind.ARTIFACTS_METADATA),
    ],
)
def test_classify_known_paths(path, expected):
    assert classify(path) is expected


@pytest.mark.parametrize(
    "name",
    ["artifacts.xml.xz", "content.jar", "compositeArtifacts.xml", "compositeContent.jar"],
)
def test_classify_ignores_content_address_folder(name):
    assert classify(f"{HEX}/{name}") is classify(name)
    assert classify(f"mirror/{HEX}/{name}") is classify(name)


@pytest.mark.parametrize(
    "path",
    [
        "foo.zip",
        "artifacts.xml.gz",
        "compositeContent.xml.xz",
        "content.txt",
        "myfeatures/org.example_1.0.0.jar",
        "",
    ],
)
def test_classify_rejects_unknown_paths(path):
    with pytest.raises(ClassificationError) as excinfo:
        classify(path)
    assert excinfo.value.path == path
    assert "unsupported asset path" in str(excinfo.value)


def test_bundle_paths_win_over_metadata_names():
    assert classify("plugins/artifacts.jar") is AssetKind.COMPONENT_BUNDLE


def test_cache_type_mapping():
    assert cache_type(AssetKind.COMPONENT_BUNDLE) is CacheType.CONTENT
    for kind in AssetKind:
        if kind is not AssetKind.COMPONENT_BUNDLE:
            assert cache_type(kind) is CacheType.METADATA


def test_extensions():
    assert metadata_extension("artifacts.xml.xz") == "xml.xz"
    assert metadata_extension("/content.xml") == "xml"
    assert metadata_extension("compositeContent.jar") == "jar"
    assert bundle_extension("plugins/a_1.0.jar.pack.gz") == "pack.gz"
    assert bundle_extension("plugins/a_1.0.jar") == "jar"
    assert bundle_extension("binary/a_1.0") is None


def test_seed_attributes_for_plugin_jar():
    seed = seed_attributes("/plugins/org.eclipse.core.runtime_3.13.0.v20170207-1030.jar")

    assert seed.component_name == "org.eclipse.core.runtime"
    assert seed.component_version == "3.13.0.v20170207-1030"
    assert seed.plugin_name is None
    assert seed.path == "plugins/org.eclipse.core.runtime_3.13.0.v20170207-1030.jar"
    assert seed.extension == "jar"


def test_seed_attributes_for_binary_keeps_underscored_name():
    seed = seed_attributes(
        "binary/org.eclipse.platform.ide.executable.gtk.linux.x86_64_4.7.0.I20170612-0950"
    )

    assert seed.component_name == "org.eclipse.platform.ide.executable.gtk.linux.x86_64"
    assert seed.component_version == "4.7.0.I20170612-0950"
    assert seed.plugin_name == "org.eclipse.platform.ide.executable.gtk.linux.x86_64"
    assert seed.extension is None


def test_seed_attributes_for_pack_gz():
    seed = seed_attributes("plugins/org.example.tool_2.1.0.jar.pack.gz")
    assert seed.component_name == "org.example.tool"
    assert seed.component_version == "2.1.0"
    assert seed.extension == "pack.gz"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("org.tigris.subversion.clientadapter.svnkit;singleton:=true", "org.tigris.subversion.clientadapter.svnkit"),
        ("org.eclipse.core.runtime.feature", "org.eclipse.core.runtime"),
        ("org.example.plugin", "org.example"),
        ("org.example ; singleton:=true", "org.example"),
        (None, None),
    ],
)
def test_normalize_component_name(raw, expected):
    assert normalize_component_name(raw) == expected


def test_merge_prefers_populated_extracted_fields():
    seed = ComponentAttributes(
        component_name="org.example",
        component_version="1.0.0",
        path="plugins/org.example_1.0.0.jar",
        extension="jar",
    )
    extracted = ComponentAttributes(component_name="org.example.real", plugin_name="Example")

    merged = merge_attributes(seed, extracted)

    assert merged.component_name == "org.example.real"
    assert merged.component_version == "1.0.0"
    assert merged.plugin_name == "Example"
    assert merged.path == "plugins/org.example_1.0.0.jar"
    assert merged.is_complete
    assert merge_attributes(seed, None) is seed


def test_upstream_url_resolution():
    base = "https://download.example.org/releases/latest/"

    assert upstream_url(base, "/child/artifacts.xml") == (
        "https://download.example.org/releases/latest/child/artifacts.xml"
    )
    assert upstream_url("https://download.example.org/releases", "p2.index") == (
        "https://download.example.org/releases/p2.index"
    )
    assert upstream_url(base, "https/mirror.example.com/r/content.jar") == (
        "https://mirror.example.com/r/content.jar"
    )
    assert upstream_url(base, "http/mirror.example.com/r/content.jar") == (
        "http://mirror.example.com/r/content.jar"
    )


def test_escape_round_trip_and_parent_url():
    url = "https://download.example.org/releases/neon"

    escaped = escape_uri_to_path(url)

    assert escaped == "https/download.example.org/releases/neon"
    assert unescape_path_to_uri("/" + escaped) == url
    assert parent_url("https://host/a/b/compositeArtifacts.jar") == "https://host/a/b/"
