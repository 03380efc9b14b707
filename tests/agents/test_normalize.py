"""Tests for alert_relay/agents/normalize.py — shape detection and field merging."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from alert_relay.agents.normalize import (
    EmptyPayload,
    MalformedPayload,
    PayloadError,
    parse_alert_time,
    prefer_nested,
    run,
    to_alert,
)
from alert_relay.models.dispatch import NormalizeInput


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_flat(**overrides) -> dict:
    payload = {
        "alertId": "P-1001",
        "severity": "HIGH",
        "policyName": "Security group allows 0.0.0.0/0 on port 22",
        "policyDescription": "SSH is open to the internet.",
        "resourceName": "sg-0abc123",
        "resourceType": "SECURITY_GROUP",
        "accountName": "prod-network",
        "cloudType": "aws",
        "resourceRegion": "us-east-1",
        "alertTime": "2025-01-30T14:32:15Z",
        "callbackUrl": "https://app.prismacloud.io/alerts/P-1001",
    }
    payload.update(overrides)
    return payload


def make_nested(**overrides) -> dict:
    payload = {
        "id": "P-2002",
        "status": "open",
        "alertTs": 1738247535000,
        "region": "AWS Ohio",
        "policy": {
            "name": "IAM user has console access without MFA",
            "severity": "critical",
            "description": "Console login without MFA.",
            "recommendation": "Enable MFA for the user.",
            "policyType": "config",
            "policyId": "pol-9",
        },
        "resource": {
            "id": "arn:aws:iam::123456789012:user/bob",
            "resourceName": "bob",
            "resourceType": "iam-user",
            "cloudServiceName": "AWS IAM",
        },
        "account": {"name": "prod-identity", "cloudType": "aws"},
    }
    payload.update(overrides)
    return payload


def body(payload) -> NormalizeInput:
    return NormalizeInput(body=json.dumps(payload).encode())


# ---------------------------------------------------------------------------
# prefer_nested merge rule
# ---------------------------------------------------------------------------

class TestPreferNested:
    def test_nested_wins_when_present(self):
        assert prefer_nested("nested", "flat") == "nested"

    def test_flat_used_when_nested_empty(self):
        assert prefer_nested("", "flat") == "flat"

    def test_flat_used_when_nested_missing(self):
        assert prefer_nested(None, "flat") == "flat"

    def test_both_absent_is_empty(self):
        assert prefer_nested(None, None) == ""

    def test_whitespace_counts_as_empty(self):
        assert prefer_nested("   ", "flat") == "flat"

    def test_non_string_scalars_coerced(self):
        assert prefer_nested(42, None) == "42"
        assert prefer_nested(True, None) == "true"

    def test_objects_are_not_values(self):
        assert prefer_nested({"a": 1}, "flat") == "flat"
        assert prefer_nested([1, 2], None) == ""


# ---------------------------------------------------------------------------
# Shape detection
# ---------------------------------------------------------------------------

class TestShapeDetection:
    def test_single_object_becomes_one_alert(self):
        output = run(body(make_flat()))
        assert len(output.alerts) == 1

    def test_array_preserves_order(self):
        output = run(body([make_flat(alertId="a"), make_nested(id="b"), make_flat(alertId="c")]))
        assert [alert.id for alert in output.alerts] == ["a", "b", "c"]

    def test_single_and_one_element_array_are_equivalent(self):
        single = run(body(make_nested()))
        batch = run(body([make_nested()]))
        assert single.alerts == batch.alerts

    def test_empty_array_raises_empty_payload(self):
        with pytest.raises(EmptyPayload):
            run(body([]))

    @pytest.mark.parametrize(
        "raw",
        [b"not json", b"", b"42", b'"a string"', b"[1, 2, 3]", b'[{"a": 1}, "x"]', b"null", b"{bad"],
    )
    def test_malformed_bodies(self, raw):
        with pytest.raises(MalformedPayload):
            run(NormalizeInput(body=raw))

    def test_invalid_utf8_is_malformed(self):
        with pytest.raises(MalformedPayload):
            run(NormalizeInput(body=b"\xff\xfe{"))

    def test_payload_errors_share_a_base(self):
        assert issubclass(EmptyPayload, PayloadError)
        assert issubclass(MalformedPayload, PayloadError)

    def test_empty_object_is_a_valid_alert(self):
        output = run(body({}))
        assert len(output.alerts) == 1
        assert output.alerts[0].title() == "[Prisma Cloud] Security Alert"


# ---------------------------------------------------------------------------
# Field merging
# ---------------------------------------------------------------------------

class TestFlatShape:
    def test_fields_mapped(self):
        alert = to_alert(make_flat())
        assert alert.id == "P-1001"
        assert alert.policy_name == "Security group allows 0.0.0.0/0 on port 22"
        assert alert.policy_description == "SSH is open to the internet."
        assert alert.resource_name == "sg-0abc123"
        assert alert.resource_type == "SECURITY_GROUP"
        assert alert.account_name == "prod-network"
        assert alert.cloud_type == "aws"
        assert alert.resource_region == "us-east-1"
        assert alert.callback_url == "https://app.prismacloud.io/alerts/P-1001"

    def test_severity_lowercased(self):
        assert to_alert(make_flat()).severity == "high"

    def test_flat_id_key_fallback(self):
        raw = make_flat()
        raw.pop("alertId")
        raw["id"] = "P-7"
        assert to_alert(raw).id == "P-7"

    def test_alert_time_parsed(self):
        alert = to_alert(make_flat())
        assert alert.alert_time == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)


class TestNestedShape:
    def test_fields_mapped(self):
        alert = to_alert(make_nested())
        assert alert.id == "P-2002"
        assert alert.severity == "critical"
        assert alert.policy_name == "IAM user has console access without MFA"
        assert alert.policy_recommendation == "Enable MFA for the user."
        assert alert.policy_type == "config"
        assert alert.policy_id == "pol-9"
        assert alert.resource_id == "arn:aws:iam::123456789012:user/bob"
        assert alert.resource_name == "bob"
        assert alert.resource_type == "iam-user"
        assert alert.resource_cloud_service == "AWS IAM"
        assert alert.account_name == "prod-identity"
        assert alert.cloud_type == "aws"
        assert alert.resource_region == "AWS Ohio"
        assert alert.status == "open"

    def test_alert_ts_epoch_millis(self):
        alert = to_alert(make_nested())
        assert alert.alert_time == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)

    def test_resource_region_used_without_top_level_region(self):
        raw = make_nested()
        raw.pop("region")
        raw["resource"]["region"] = "us-east-2"
        assert to_alert(raw).resource_region == "us-east-2"

    def test_resource_account_name_used_without_account_object(self):
        raw = make_nested()
        raw.pop("account")
        raw["resource"]["accountName"] = "from-resource"
        raw["resource"]["cloudType"] = "gcp"
        alert = to_alert(raw)
        assert alert.account_name == "from-resource"
        assert alert.cloud_type == "gcp"


class TestMixedShape:
    def test_nested_wins_over_flat(self):
        raw = make_nested(policyName="flat name", severity="low", accountName="flat-account")
        alert = to_alert(raw)
        assert alert.policy_name == "IAM user has console access without MFA"
        assert alert.severity == "critical"
        assert alert.account_name == "prod-identity"

    def test_flat_fills_empty_nested_field(self):
        raw = make_nested(policyName="flat name")
        raw["policy"]["name"] = ""
        assert to_alert(raw).policy_name == "flat name"

    def test_flat_fills_missing_nested_object(self):
        raw = make_nested(resourceName="flat-resource")
        raw.pop("resource")
        assert to_alert(raw).resource_name == "flat-resource"

    def test_nested_time_preferred(self):
        raw = make_nested(alertTime="2020-01-01T00:00:00Z")
        assert to_alert(raw).alert_time.year == 2025

    def test_non_object_sub_record_ignored(self):
        raw = make_flat(policy="not an object")
        alert = to_alert(raw)
        assert alert.policy_name == "Security group allows 0.0.0.0/0 on port 22"

    def test_field_absent_everywhere_is_empty(self):
        alert = to_alert({"policyName": "only a name"})
        assert alert.resource_type == ""
        assert alert.account_name == ""
        assert alert.alert_time is None


# ---------------------------------------------------------------------------
# Extras
# ---------------------------------------------------------------------------

class TestExtras:
    def test_unknown_keys_preserved(self):
        tags = [{"key": "env", "value": "prod"}]
        alert = to_alert(make_flat(tags=tags, riskDetail={"score": 90}))
        assert alert.raw_extras["tags"] == tags
        assert alert.raw_extras["riskDetail"] == {"score": 90}

    def test_canonical_keys_not_duplicated(self):
        alert = to_alert(make_flat())
        for key in ("alertId", "severity", "policyName", "resourceName", "alertTime", "callbackUrl"):
            assert key not in alert.raw_extras

    def test_nested_policy_and_account_consumed(self):
        alert = to_alert(make_nested())
        assert "policy" not in alert.raw_extras
        assert "account" not in alert.raw_extras

    def test_raw_resource_object_kept(self):
        alert = to_alert(make_nested())
        assert alert.raw_extras["resource"]["resourceName"] == "bob"

    def test_empty_values_skipped(self):
        alert = to_alert(make_flat(tags=[], notes="", meta={}, other=None))
        assert alert.raw_extras == {}

    def test_sender_metadata_dropped(self):
        alert = to_alert(make_flat(sender="Prisma Cloud", sentTs=1738247535000))
        assert "sender" not in alert.raw_extras
        assert "sentTs" not in alert.raw_extras


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

class TestParseAlertTime:
    def test_epoch_millis_int(self):
        assert parse_alert_time(1738247535000) == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)

    def test_epoch_millis_numeric_string(self):
        assert parse_alert_time("1738247535000") == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)

    def test_iso_with_zulu(self):
        assert parse_alert_time("2025-01-30T14:32:15Z") == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)

    def test_iso_with_offset_converted_to_utc(self):
        parsed = parse_alert_time("2025-01-30T16:32:15+02:00")
        assert parsed == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_naive_iso_assumed_utc(self):
        assert parse_alert_time("2025-01-30T14:32:15") == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)

    def test_short_fraction(self):
        parsed = parse_alert_time("2024-01-15T10:30:00.12Z")
        assert parsed == datetime(2024, 1, 15, 10, 30, 0, 120000, tzinfo=timezone.utc)

    def test_nanosecond_fraction_truncated_to_micros(self):
        parsed = parse_alert_time("2024-01-15T10:30:00.123456789Z")
        assert parsed == datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

    def test_nanosecond_fraction_with_offset(self):
        parsed = parse_alert_time("2024-01-15T12:30:00.999999999+02:00")
        assert parsed == datetime(2024, 1, 15, 10, 30, 0, 999999, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", True, {"ts": 1}])
    def test_unparseable_is_none(self, value):
        assert parse_alert_time(value) is None

    def test_out_of_range_epoch_is_none(self):
        assert parse_alert_time(10**30) is None


class TestParseWarnings:
    def test_bad_timestamp_records_warning(self):
        output = run(body([make_flat(), make_flat(alertTime="not-a-date")]))
        assert output.alerts[1].alert_time is None
        assert len(output.parse_warnings) == 1
        assert output.parse_warnings[0].startswith("Alert 2:")
        assert "alertTime" in output.parse_warnings[0]

    def test_bad_nested_time_falls_back_to_flat(self):
        output = run(body(make_nested(alertTs="garbage", alertTime="2025-01-30T14:32:15Z")))
        assert output.alerts[0].alert_time == datetime(2025, 1, 30, 14, 32, 15, tzinfo=timezone.utc)
        assert len(output.parse_warnings) == 1

    def test_clean_batch_has_no_warnings(self):
        output = run(body([make_flat(), make_nested()]))
        assert output.parse_warnings == []
