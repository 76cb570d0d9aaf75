"""Component identity extraction from feature and plugin archives."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from typing import BinaryIO

from p2proxy.assets.attributes import ComponentAttributes, normalize_component_name
from p2proxy.errors import MalformedMetadataError
from p2proxy.metadata.archive import (
    find_manifest_entry,
    localize,
    open_jar,
    parse_manifest,
    parse_properties,
    read_entry,
)
from p2proxy.storage.tempblob import TempBlob

FEATURE_XML = "feature.xml"
FEATURE_PROPERTIES = "feature.properties"
DEFAULT_BUNDLE_LOCALIZATION = "OSGI-INF/l10n/bundle"
PROPERTIES_SUFFIX = ".properties"

BUNDLE_SYMBOLIC_NAME = "Bundle-SymbolicName"
BUNDLE_NAME = "Bundle-Name"
BUNDLE_VERSION = "Bundle-Version"
BUNDLE_LOCALIZATION = "Bundle-Localization"


@dataclass(slots=True)
class AttributeExtractor:
    """Read name, version and display name out of a feature or plugin jar.

    The feature descriptor (`feature.xml`) is tried first, then the OSGi
    manifest. Values of the form `%key` are resolved against the archive's
    resource bundle. Unreadable input is logged and reported as no result.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))

    def extract(self, archive: BinaryIO, extension: str | None) -> ComponentAttributes | None:
        """Return extracted attributes, or None when the archive carries none."""

        try:
            with open_jar(archive, extension) as jar:
                attributes = self._from_feature_xml(jar)
                if attributes is None:
                    attributes = self._from_manifest(jar)
        except MalformedMetadataError as exc:
            self.logger.warning("Unable to inspect %s archive: %s", extension or "jar", exc)
            return None

        if attributes is None:
            self.logger.debug("No feature.xml or manifest identity found in archive")
        return attributes

    def extract_blob(self, blob: TempBlob, extension: str | None) -> ComponentAttributes | None:
        with blob.open() as handle:
            return self.extract(handle, extension)

    def _from_feature_xml(self, jar: zipfile.ZipFile) -> ComponentAttributes | None:
        try:
            data = read_entry(jar, FEATURE_XML)
        except MalformedMetadataError as exc:
            self.logger.warning("Skipping feature.xml: %s", exc)
            return None
        if data is None:
            return None

        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            self.logger.warning("Malformed feature.xml: %s", exc)
            return None
        if root.tag != "feature":
            self.logger.warning("feature.xml root element is <%s>, expected <feature>", root.tag)
            return None

        bundle = self._bundle(jar, FEATURE_PROPERTIES)
        identifier = root.get("id") or root.get("plugin")
        return ComponentAttributes(
            component_name=normalize_component_name(localize(identifier, bundle)),
            component_version=localize(root.get("version"), bundle),
            plugin_name=localize(root.get("label"), bundle),
        )

    def _from_manifest(self, jar: zipfile.ZipFile) -> ComponentAttributes | None:
        entry = find_manifest_entry(jar)
        if entry is None:
            return None

        try:
            manifest = parse_manifest(read_entry(jar, entry) or b"")
        except MalformedMetadataError as exc:
            self.logger.warning("Malformed manifest %s: %s", entry, exc)
            return None

        symbolic_name = manifest.get(BUNDLE_SYMBOLIC_NAME)
        bundle_name = manifest.get(BUNDLE_NAME)
        version = manifest.get(BUNDLE_VERSION)
        if not (symbolic_name or bundle_name or version):
            return None

        bundle = None
        if any(value and value.startswith("%") for value in (symbolic_name, bundle_name, version)):
            base = manifest.get(BUNDLE_LOCALIZATION) or DEFAULT_BUNDLE_LOCALIZATION
            bundle = self._bundle(jar, base + PROPERTIES_SUFFIX)

        return ComponentAttributes(
            component_name=normalize_component_name(localize(symbolic_name, bundle)),
            component_version=localize(version, bundle),
            plugin_name=localize(bundle_name, bundle),
        )

    def _bundle(self, jar: zipfile.ZipFile, name: str) -> dict[str, str] | None:
        try:
            data = read_entry(jar, name)
        except MalformedMetadataError as exc:
            self.logger.warning("Skipping resource bundle %s: %s", name, exc)
            return None
        if data is None:
            return None
        return parse_properties(data)
