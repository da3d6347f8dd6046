#!/usr/bin/env python3
"""Load FeatureGate manifests keyed by ClusterProfile and FeatureSet."""

from __future__ import annotations

import os
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import yaml

ANNOTATION_PREFIX = "include.release.openshift.io/"
ANNOTATION_SENTINEL = "false-except-for-the-config-operator"

DEFAULT_FEATURE_SET = "Default"
OKD_FEATURE_SET = "OKD"

DEFAULT_MANIFEST_DIR = os.path.join("payload-manifests", "featuregates")


class ClusterProfile(str, Enum):
    SELF_MANAGED_HA = "SelfManagedHA"
    HYPERSHIFT = "Hypershift"


# Substring of the qualifying annotation key -> profile.
PROFILE_KEY_MARKERS: Tuple[Tuple[str, ClusterProfile], ...] = (
    ("self-managed-high-availability", ClusterProfile.SELF_MANAGED_HA),
    ("ibm-cloud-managed", ClusterProfile.HYPERSHIFT),
)

FeatureSetsByProfile = Dict[ClusterProfile, Dict[str, Set[str]]]


class VerificationError(Exception):
    """Raised when the featuregate manifests cannot be verified."""


class ConfigurationError(VerificationError):
    pass


class DirectoryUnreadable(ConfigurationError):
    pass


class FileReadError(VerificationError):
    pass


class ParseError(VerificationError):
    pass


class AmbiguousProfileAnnotation(VerificationError):
    pass


class DuplicateFeatureSetEntry(VerificationError):
    pass


def _walk(obj: Any, path: Tuple[str, ...]) -> Any:
    node = obj
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def get_string(obj: Any, *path: str) -> str:
    value = _walk(obj, path)
    return value if isinstance(value, str) else ""


def get_list(obj: Any, *path: str) -> List[Any]:
    value = _walk(obj, path)
    return value if isinstance(value, list) else []


def get_mapping(obj: Any, *path: str) -> Dict[str, Any]:
    value = _walk(obj, path)
    return value if isinstance(value, dict) else {}


def cluster_profile_for_annotations(
    annotations: Mapping[str, Any], source: str = "manifest"
) -> Optional[ClusterProfile]:
    """Map release-inclusion annotations to a ClusterProfile.

    Only keys under ANNOTATION_PREFIX whose value is ANNOTATION_SENTINEL are
    considered. Returns None when no such key names a known profile, and
    raises AmbiguousProfileAnnotation when they name more than one.
    """
    found: Set[ClusterProfile] = set()
    for key, value in annotations.items():
        if not isinstance(key, str) or value != ANNOTATION_SENTINEL:
            continue
        if not key.startswith(ANNOTATION_PREFIX):
            continue
        for marker, profile in PROFILE_KEY_MARKERS:
            if marker in key:
                found.add(profile)
                break

    if len(found) > 1:
        names = ", ".join(sorted(p.value for p in found))
        raise AmbiguousProfileAnnotation(
            f"{source}: annotations select more than one cluster profile: {names}"
        )
    if not found:
        return None
    return found.pop()


def load_manifest(path: str) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        raise FileReadError(f"unable to read {path!r}: {exc}") from exc

    try:
        # Only the first document of a multi-document stream is consulted.
        document = next(yaml.safe_load_all(data), None)
    except yaml.YAMLError as exc:
        raise ParseError(f"unable to parse {path!r}: {exc}") from exc

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ParseError(f"unable to parse {path!r}: top-level must be a mapping")
    return document


def enabled_feature_gates(document: Mapping[str, Any]) -> Set[str]:
    """Names enabled by the current (first) status.featureGates entry."""
    gates: Set[str] = set()
    versions = get_list(document, "status", "featureGates")
    if not versions:
        return gates
    for gate in get_list(versions[0], "enabled"):
        name = get_string(gate, "name")
        if name:
            gates.add(name)
    return gates


def extract_feature_set(
    document: Mapping[str, Any], source: str = "manifest"
) -> Tuple[Optional[ClusterProfile], str, Set[str]]:
    annotations = get_mapping(document, "metadata", "annotations")
    profile = cluster_profile_for_annotations(annotations, source=source)
    feature_set = get_string(document, "spec", "featureSet") or DEFAULT_FEATURE_SET
    return profile, feature_set, enabled_feature_gates(document)


def read_feature_gate_manifests(manifest_dir: str) -> FeatureSetsByProfile:
    """Return cluster profile -> feature set -> enabled featuregate names."""
    try:
        names = sorted(os.listdir(manifest_dir))
    except OSError as exc:
        raise DirectoryUnreadable(f"cannot read manifest dir {manifest_dir!r}: {exc}") from exc

    result: FeatureSetsByProfile = {}
    sources: Dict[Tuple[ClusterProfile, str], str] = {}

    for name in names:
        file_path = os.path.join(manifest_dir, name)
        if os.path.isdir(file_path):
            continue

        document = load_manifest(file_path)
        profile, feature_set, gates = extract_feature_set(document, source=file_path)
        if profile is None:
            continue

        key = (profile, feature_set)
        if key in sources:
            raise DuplicateFeatureSetEntry(
                f"{file_path}: ClusterProfile {profile.value!r} FeatureSet "
                f"{feature_set!r} already defined by {sources[key]}"
            )
        sources[key] = file_path
        result.setdefault(profile, {})[feature_set] = gates

    return result


def summarize(feature_sets: FeatureSetsByProfile) -> Dict[str, Dict[str, List[str]]]:
    return {
        profile.value: {
            feature_set: sorted(gates) for feature_set, gates in sets_by_name.items()
        }
        for profile, sets_by_name in feature_sets.items()
    }
