#!/usr/bin/env python3
"""Verify that every featuregate enabled in Default is also enabled in OKD.

OKD may enable additional featuregates beyond Default (for example from
TechPreviewNoUpgrade or DevPreviewNoUpgrade), but it must not be missing any
that Default enables, for every ClusterProfile that defines both.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from featuregate_manifests import (  # type: ignore
    DEFAULT_FEATURE_SET,
    DEFAULT_MANIFEST_DIR,
    OKD_FEATURE_SET,
    ClusterProfile,
    ConfigurationError,
    FeatureSetsByProfile,
    VerificationError,
    read_feature_gate_manifests,
    summarize,
)


class InvariantViolation(VerificationError):
    def __init__(self, diagnostics: Sequence["Diagnostic"]) -> None:
        super().__init__("OKD featuregate verification failed")
        self.diagnostics = list(diagnostics)


@dataclass(frozen=True)
class Diagnostic:
    profile: ClusterProfile
    missing: Tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.missing)


def check_okd_featuregates(feature_sets: FeatureSetsByProfile) -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []

    for profile in sorted(feature_sets, key=lambda p: p.value):
        sets_by_name = feature_sets[profile]
        default_gates = sets_by_name.get(DEFAULT_FEATURE_SET)
        okd_gates = sets_by_name.get(OKD_FEATURE_SET)
        # Nothing to compare unless both feature sets exist for this profile.
        if default_gates is None or okd_gates is None:
            continue

        missing = default_gates - okd_gates
        if missing:
            diagnostics.append(Diagnostic(profile=profile, missing=tuple(sorted(missing))))

    return diagnostics


def render_diagnostic(diagnostic: Diagnostic) -> str:
    lines: List[str] = []
    lines.append(
        f'ERROR: ClusterProfile "{diagnostic.profile.value}": OKD featureset is missing '
        f"{diagnostic.count} featuregate(s) that are enabled in Default:"
    )
    for gate in diagnostic.missing:
        lines.append(f"  - {gate}")
    lines.append("")
    lines.append("All featuregates enabled in Default must also be enabled in OKD.")
    return "\n".join(lines)


def render_report(diagnostics: Sequence[Diagnostic]) -> str:
    return "\n\n".join(render_diagnostic(d) for d in diagnostics)


def validate_manifest_dir(manifest_dir: Optional[str]) -> None:
    if not manifest_dir:
        raise ConfigurationError("--featureset-manifest-path is required")
    try:
        os.listdir(manifest_dir)
    except OSError as exc:
        raise ConfigurationError(
            f"--featureset-manifest-path cannot be read: {exc}"
        ) from exc


def verify_feature_sets(feature_sets: FeatureSetsByProfile) -> None:
    diagnostics = check_okd_featuregates(feature_sets)
    if diagnostics:
        raise InvariantViolation(diagnostics)


def verify(manifest_dir: str) -> FeatureSetsByProfile:
    """Load manifest_dir and raise InvariantViolation if OKD lacks Default gates."""
    validate_manifest_dir(manifest_dir)
    feature_sets = read_feature_gate_manifests(manifest_dir)
    verify_feature_sets(feature_sets)
    return feature_sets


def _main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="verify-okd-featuregates",
        description="Verify that all featuregates enabled in Default are also enabled in OKD",
    )
    parser.add_argument(
        "--featureset-manifest-path",
        default=DEFAULT_MANIFEST_DIR,
        help="Path to directory containing the FeatureGate YAMLs for each "
        "FeatureSet,ClusterProfile tuple",
    )
    parser.add_argument(
        "--print-summary",
        action="store_true",
        help="Print enabled featuregates per ClusterProfile and FeatureSet as JSON",
    )
    args = parser.parse_args(argv)

    manifest_dir = args.featureset_manifest_path
    try:
        validate_manifest_dir(manifest_dir)
        feature_sets = read_feature_gate_manifests(manifest_dir)
        # The summary is printed before checking so it is available on failure too.
        if args.print_summary:
            json.dump(summarize(feature_sets), sys.stdout, indent=2, sort_keys=True)
            print("")
        verify_feature_sets(feature_sets)
    except InvariantViolation as e:
        print(render_report(e.diagnostics), file=sys.stderr)
        print(f"OKD FEATUREGATE VERIFICATION ERROR: {e}", file=sys.stderr)
        return 1
    except VerificationError as e:
        print(f"OKD FEATUREGATE VERIFICATION ERROR: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(_main())
