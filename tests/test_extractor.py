"""Tests for component attribute extraction."""

from __future__ import annotations

import gzip
import io

from p2proxy.metadata import AttributeExtractor
from p2proxy.metadata.archive import parse_manifest, parse_properties
from p2proxy.storage.tempblob import TempBlob

FEATURE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feature
      id="org.eclipse.core.runtime.feature"
      label="%featureName"
      version="1.2.0.v20170518-1049"
      provider-name="%providerName">
   <plugin id="org.eclipse.core.runtime" version="0.0.0"/>
</feature>
"""

SVNKIT_MANIFEST = (
    "Manifest-Version: 1.0\r\n"
    "Bundle-ManifestVersion: 2\r\n"
    "Bundle-Name: %pluginName\r\n"
    "Bundle-SymbolicName: org.tigris.subversion.clientadapter.svnkit;singleton:=true\r\n"
    "Bundle-Version: 1.8.3\r\n"
    "Bundle-Localization: plugin\r\n"
    "\r\n"
    "Name: org/tigris/Example.class\r\n"
    "SHA-256-Digest: abc\r\n"
)


def _extract(data: bytes, extension: str = "jar"):
    return AttributeExtractor().extract(io.BytesIO(data), extension)


def test_feature_xml_with_localized_label(make_jar):
    jar = make_jar(
        {
            "feature.xml": FEATURE_XML,
            "feature.properties": "# feature strings\nfeatureName=Eclipse Runtime\nproviderName=Eclipse\n",
        }
    )

    attributes = _extract(jar)

    assert attributes is not None
    assert attributes.component_name == "org.eclipse.core.runtime"
    assert attributes.component_version == "1.2.0.v20170518-1049"
    assert attributes.plugin_name == "Eclipse Runtime"


def test_feature_xml_keeps_literal_when_key_missing(make_jar):
    jar = make_jar({"feature.xml": FEATURE_XML, "feature.properties": "other=value\n"})

    attributes = _extract(jar)

    assert attributes.plugin_name == "%featureName"


def test_feature_xml_without_id_uses_plugin_attribute(make_jar):
    jar = make_jar(
        {"feature.xml": '<feature plugin="org.example.branding" label="Example" version="2.0.0"/>'}
    )

    attributes = _extract(jar)

    assert attributes.component_name == "org.example.branding"
    assert attributes.plugin_name == "Example"
    assert attributes.component_version == "2.0.0"


def test_manifest_strips_singleton_directive(make_jar):
    jar = make_jar(
        {
            "META-INF/MANIFEST.MF": SVNKIT_MANIFEST,
            "plugin.properties": "pluginName=SVNKit Client Adapter\n",
        }
    )

    attributes = _extract(jar)

    assert attributes.component_name == "org.tigris.subversion.clientadapter.svnkit"
    assert attributes.component_version == "1.8.3"
    assert attributes.plugin_name == "SVNKit Client Adapter"


def test_manifest_uses_default_localization_bundle(make_jar):
    manifest = (
        "Manifest-Version: 1.0\n"
        "Bundle-SymbolicName: org.example.ui\n"
        "Bundle-Name: %bundle.name\n"
        "Bundle-Version: 3.0.0.qualifier\n"
    )
    jar = make_jar(
        {
            "META-INF/MANIFEST.MF": manifest,
            "OSGI-INF/l10n/bundle.properties": "bundle.name = Example UI\n",
        }
    )

    attributes = _extract(jar)

    assert attributes.plugin_name == "Example UI"
    assert attributes.component_version == "3.0.0.qualifier"


def test_manifest_continuation_lines(make_jar):
    manifest = (
        "Manifest-Version: 1.0\r\n"
        "Bundle-SymbolicName: org.example.with.a.very.long.symbolic.na\r\n"
        " me;singleton:=true\r\n"
        "Bundle-Version: 1.0.0\r\n"
    )
    jar = make_jar({"META-INF/MANIFEST.MF": manifest})

    attributes = _extract(jar)

    assert attributes.component_name == "org.example.with.a.very.long.symbolic.name"


def test_malformed_feature_xml_falls_back_to_manifest(make_jar):
    jar = make_jar(
        {
            "feature.xml": "<feature id='broken'",
            "META-INF/MANIFEST.MF": "Bundle-SymbolicName: org.example.fallback\nBundle-Version: 1.0.0\n",
        }
    )

    attributes = _extract(jar)

    assert attributes.component_name == "org.example.fallback"


def test_pack_gz_is_decoded_before_inspection(make_jar):
    jar = make_jar({"META-INF/MANIFEST.MF": "Bundle-SymbolicName: org.example.packed\nBundle-Version: 4.2.0\n"})

    attributes = _extract(gzip.compress(jar), "pack.gz")

    assert attributes.component_name == "org.example.packed"
    assert attributes.component_version == "4.2.0"


def test_pack200_payload_is_an_extraction_miss():
    payload = gzip.compress(b"\xca\xfe\xd0\x0d" + b"\x00" * 32)

    assert _extract(payload, "pack.gz") is None


def test_unreadable_archives_are_misses(make_jar):
    assert _extract(b"definitely not a zip") is None
    assert _extract(b"not gzip either", "pack.gz") is None
    assert _extract(make_jar({"readme.txt": "hello"})) is None


def test_extract_blob(make_jar, tmp_path):
    jar = make_jar({"META-INF/MANIFEST.MF": "Bundle-SymbolicName: org.example.blob\n"})
    with TempBlob.from_bytes(jar, tmp_path) as blob:
        attributes = AttributeExtractor().extract_blob(blob, "jar")

    assert attributes.component_name == "org.example.blob"
    assert attributes.component_version is None


def test_parse_properties_grammar():
    data = (
        "# comment\n"
        "! another comment\n"
        "plain=value\n"
        "spaced = padded value\n"
        "colon:separated\n"
        "multi = first \\\n"
        "        second\n"
        "unicode=Caf\\u00e9\n"
        "escaped\\ key=tab\\there\n"
    ).encode("utf-8")

    properties = parse_properties(data)

    assert properties["plain"] == "value"
    assert properties["spaced"] == "padded value"
    assert properties["colon"] == "separated"
    assert properties["multi"] == "first second"
    assert properties["unicode"] == "Café"
    assert properties["escaped key"] == "tab\there"


def test_parse_properties_latin1_fallback():
    assert parse_properties("name=Gr\xfc\xdfe".encode("latin-1")) == {"name": "Grüße"}


def test_parse_manifest_reads_main_section_only():
    manifest = parse_manifest(SVNKIT_MANIFEST.encode("utf-8"))

    assert manifest["Bundle-Version"] == "1.8.3"
    assert "Name" not in manifest
