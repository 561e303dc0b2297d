"""Tests for drift classification."""

from __future__ import annotations

import pytest

from dotward_cli.drift import DriftClassification, classify, detect_drift
from dotward_cli.fingerprints import FingerprintManifest, hash_bytes
from dotward_cli.schema import OwnershipKind

A = hash_bytes(b"a")
B = hash_bytes(b"b")
C = hash_bytes(b"c")


@pytest.mark.parametrize(
    ("current", "last", "template", "expected"),
    [
        (None, A, A, DriftClassification.MISSING),
        (None, None, A, DriftClassification.MISSING),
        (A, None, A, DriftClassification.FIRST_APPLY),
        (A, None, B, DriftClassification.FIRST_APPLY),
        (A, A, A, DriftClassification.UNCHANGED),
        (A, A, B, DriftClassification.TEMPLATE_ONLY_CHANGED),
        (B, A, A, DriftClassification.USER_MODIFIED),
        (B, A, C, DriftClassification.USER_MODIFIED),
        (B, A, B, DriftClassification.USER_MODIFIED),
    ],
)
def test_classification_table(current, last, template, expected):
    assert classify(current, last, template) is expected


def test_create_once_existing_file_is_always_user_modified():
    assert classify(A, A, A, OwnershipKind.CREATE_ONCE) is DriftClassification.USER_MODIFIED
    assert classify(A, None, A, OwnershipKind.CREATE_ONCE) is DriftClassification.USER_MODIFIED


def test_create_once_missing_file_is_missing():
    assert classify(None, A, A, OwnershipKind.CREATE_ONCE) is DriftClassification.MISSING


class TestDetectDrift:
    def test_hashes_file_on_disk(self, project):
        (project / "guide.md").write_bytes(b"a")
        manifest = FingerprintManifest("1.0.0").with_entry("guide.md", A, "1.0.0")

        report = detect_drift(project, "guide.md", B, manifest)

        assert report.classification is DriftClassification.TEMPLATE_ONLY_CHANGED
        assert report.current_hash == A
        assert report.last_applied_hash == A
        assert report.exists
        assert not report.matches_template

    def test_missing_file(self, project):
        report = detect_drift(project, "nope.md", A, FingerprintManifest())
        assert report.classification is DriftClassification.MISSING
        assert not report.exists

    def test_precomputed_hash_is_used(self, project):
        report = detect_drift(project, "never-read.md", A, FingerprintManifest(), current_hash=A)
        assert report.classification is DriftClassification.FIRST_APPLY
        assert report.matches_template
