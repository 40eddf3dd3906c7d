"""Tests for the trust status report."""

from acc_trust.core.attestation import AttestationForge
from acc_trust.core.status import TrustStatusAggregator
from acc_trust.schemas import TRUST_STATUS_SCHEMA, validate_document

from conftest import IMAGE_A, IMAGE_B, DIGEST_A, DIGEST_B, FakeRegistry, make_record, violation


def make_aggregator(paths, resolver, state, store, registry=None):
    return TrustStatusAggregator(paths, resolver, state, store, registry)


def test_unknown_image(paths, resolver, state, store) -> None:
    report = make_aggregator(paths, resolver, state, store).status(IMAGE_A)
    data = report.to_dict()

    assert report.exit_code == 2
    assert data["status"] == "unknown"
    assert data["violations"] == []
    assert data["warnings"] == []
    assert data["attestations"] == []
    assert data["sbomPresent"] is False
    assert data["timestamp"] == ""
    validate_document(data, TRUST_STATUS_SCHEMA)


def test_failed_image(paths, resolver, state, store) -> None:
    state.save(
        make_record(
            IMAGE_A,
            DIGEST_A,
            violations=[violation("no-root-user", "critical")],
            profile_used="baseline",
        )
    )
    report = make_aggregator(paths, resolver, state, store).status(IMAGE_A)

    assert report.status == "fail"
    assert report.exit_code == 1
    assert report.profile_used == "baseline"
    assert [v.rule for v in report.violations] == ["no-root-user"]
    validate_document(report.to_dict(), TRUST_STATUS_SCHEMA)


def test_attestations_are_scoped_to_digest(paths, resolver, state, store, config) -> None:
    forge = AttestationForge(paths, resolver, state, store)
    state.save(make_record(IMAGE_A, DIGEST_A))
    attested_a = forge.create(IMAGE_A, config)
    state.save(make_record(IMAGE_B, DIGEST_B))
    attested_b = forge.create(IMAGE_B, config)

    aggregator = make_aggregator(paths, resolver, state, store)
    report_a = aggregator.status(IMAGE_A)
    report_b = aggregator.status(IMAGE_B)

    assert report_a.status == "pass"
    assert report_a.exit_code == 0
    assert report_a.attestations == [paths.relative(attested_a.path)]
    assert report_b.attestations == [paths.relative(attested_b.path)]


def test_remote_attestations_are_fetched(paths, resolver, state, store, registry) -> None:
    state.save(make_record(IMAGE_A, DIGEST_A))
    registry.publish(IMAGE_A, DIGEST_A, b'{"remote": true}', "2025-01-01T00:00:00Z")

    aggregator = make_aggregator(paths, resolver, state, store, registry)
    assert aggregator.status(IMAGE_A).attestations == []

    report = aggregator.status(IMAGE_A, remote=True)
    assert len(report.attestations) == 1
    assert "/remote/" in report.attestations[0]


def test_remote_failure_degrades_to_local(paths, resolver, state, store) -> None:
    state.save(make_record(IMAGE_A, DIGEST_A))
    aggregator = make_aggregator(paths, resolver, state, store, FakeRegistry(fail=True))

    report = aggregator.status(IMAGE_A, remote=True)
    assert report.status == "pass"
    assert report.attestations == []
