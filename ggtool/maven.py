"""Release listings of artifacts published to Maven Central."""

from __future__ import annotations

import xml.etree.ElementTree as ET

import requests

from ggtool.executor import VARIANT_ANY, Arch, Download, Os
from ggtool.versions import GgVersion

MAVEN_ROOT = "https://repo1.maven.org/maven2/org"
_TIMEOUT = 30


class MavenError(Exception):
    """Raised when Maven metadata cannot be fetched or parsed."""


def _required(element: ET.Element, tag: str) -> ET.Element:
    child = element.find(tag)
    if child is None:
        raise MavenError(f"XML was not well-formatted: missing <{tag}>")
    return child


def parse_maven_metadata(body: str, root_url: str, artifact: str) -> list[Download]:
    """Turn a maven-metadata.xml document into one jar download per version."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as error:
        raise MavenError(f"XML was not well-formatted: {error}") from error

    _required(root, "groupId")
    _required(root, "artifactId")
    versioning = _required(root, "versioning")
    for tag in ("latest", "release", "lastUpdated"):
        _required(versioning, tag)
    versions = _required(versioning, "versions")

    downloads = []
    for element in versions.findall("version"):
        ver = (element.text or "").strip()
        downloads.append(
            Download(
                download_url=f"{root_url}/{ver}/{artifact}-{ver}.jar",
                version=GgVersion.new(ver),
                os=Os.ANY,
                arch=Arch.ANY,
                variant=VARIANT_ANY,
                tags={"beta"} if "beta" in ver else set(),
            )
        )
    return downloads


def get_download_urls_from_maven(group: str, artifact: str) -> list[Download]:
    """Fetch the metadata of ``org/<group>/<artifact>`` and list its jars."""
    root_url = f"{MAVEN_ROOT}/{group}/{artifact}"
    metadata_url = f"{root_url}/maven-metadata.xml"
    try:
        response = requests.get(metadata_url, timeout=_TIMEOUT)
        body = response.text
    except requests.RequestException as error:
        raise MavenError(f"Unable to download maven metadata xml: {error}") from error
    return parse_maven_metadata(body, root_url, artifact)