"""
Tests for procurement_config: loading, validation, checksums, bridges.

Covers:
- the packaged default set loads, validates and builds the default chain
- company overrides flow through to ApprovalChainPolicy
- validation errors block use; warnings are logged
- checksum determinism
- the PROCUREMENT_CONFIG_TRACE log entry
"""

from pathlib import Path

import pytest
import yaml

from procurement_config import DEFAULT_CONFIG_PATH, get_active_config
from procurement_config.bridges import (
    build_allocator_settings,
    build_chain_policy,
    build_workflow_settings,
)
from procurement_config.loader import compute_checksum, load_config_file, parse_config
from procurement_config.validator import validate_config
from procurement_kernel.domain.approval import DEFAULT_CHAIN_POLICY
from procurement_kernel.domain.roles import Role
from procurement_kernel.services.request_workflow import RequestWorkflowService


def write_config(tmp_path: Path, **overrides) -> Path:
    data = {
        "config_id": "test-set",
        "version": 2,
        "approval_chain": {
            "default": ["section_head", "scm_head", "pjo"],
            "overrides": [{"company_code": "rgn", "roles": ["section_head", "scm_head"]}],
        },
        "request_number": {"max_sequence": 500},
        "database": {"lock_timeout_ms": 2000, "busy_timeout_seconds": 5},
    }
    data.update(overrides)
    path = tmp_path / "procurement.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultSet:

    def test_default_set_loads(self):
        config = get_active_config()
        assert config.config_id == "procurement-default"
        assert config.version == 1
        assert config.approval_chain.overrides == ()
        assert config.request_number.max_sequence == 9999
        assert config.database.lock_timeout_ms == 5000
        assert len(config.checksum) == 64

    def test_default_set_matches_kernel_default(self):
        policy = build_chain_policy(get_active_config(DEFAULT_CONFIG_PATH))
        assert policy == DEFAULT_CHAIN_POLICY


class TestLoading:

    def test_overrides_are_normalized(self, tmp_path):
        config = load_config_file(write_config(tmp_path))
        (override,) = config.approval_chain.overrides
        assert override.company_code == "RGN"
        assert override.roles == ("section_head", "scm_head")

    def test_missing_required_key(self):
        with pytest.raises(KeyError):
            parse_config({"version": 1})

    def test_wrong_type(self):
        with pytest.raises(ValueError):
            parse_config({"config_id": "x", "version": "one"})

    def test_chain_must_be_a_list(self):
        with pytest.raises(ValueError):
            parse_config({
                "config_id": "x",
                "version": 1,
                "approval_chain": {"default": "section_head"},
            })

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestValidation:

    def test_valid_config(self, tmp_path):
        result = validate_config(load_config_file(write_config(tmp_path)))
        assert result.is_valid
        assert result.warnings == []

    @pytest.mark.parametrize(
        "chain",
        [
            [],
            ["pjo", "section_head"],
            ["section_head", "section_head"],
            ["section_head", "admin"],
            ["section_head", "auditor"],
        ],
    )
    def test_invalid_default_chain(self, tmp_path, chain):
        path = write_config(tmp_path, approval_chain={"default": chain})
        result = validate_config(load_config_file(path))
        assert not result.is_valid
        assert result.errors[0].startswith("approval_chain.default")

    def test_duplicate_override(self, tmp_path):
        path = write_config(tmp_path, approval_chain={
            "overrides": [
                {"company_code": "RGN", "roles": ["section_head"]},
                {"company_code": "rgn", "roles": ["pjo"]},
            ],
        })
        result = validate_config(load_config_file(path))
        assert any("more than one override" in e for e in result.errors)

    def test_invalid_override_company_code(self, tmp_path):
        path = write_config(tmp_path, approval_chain={
            "overrides": [{"company_code": "R G N", "roles": ["section_head"]}],
        })
        assert not validate_config(load_config_file(path)).is_valid

    def test_override_equal_to_default_warns(self, tmp_path, captured_logs):
        path = write_config(tmp_path, approval_chain={
            "overrides": [
                {"company_code": "RGN", "roles": ["section_head", "scm_head", "pjo"]},
            ],
        })
        config = get_active_config(path)
        assert config.approval_chain.overrides[0].company_code == "RGN"
        warnings = [r for r in captured_logs() if r["message"] == "procurement_config_warning"]
        assert len(warnings) == 1
        assert "identical to the default chain" in warnings[0]["detail"]

    @pytest.mark.parametrize("max_sequence", [0, 10000])
    def test_max_sequence_bounds(self, tmp_path, max_sequence):
        path = write_config(tmp_path, request_number={"max_sequence": max_sequence})
        with pytest.raises(ValueError, match="max_sequence"):
            get_active_config(path)

    def test_negative_timeouts(self, tmp_path):
        path = write_config(
            tmp_path, database={"lock_timeout_ms": -1, "busy_timeout_seconds": -2},
        )
        result = validate_config(load_config_file(path))
        assert len(result.errors) == 2

    def test_invalid_version(self, tmp_path):
        path = write_config(tmp_path, version=0)
        with pytest.raises(ValueError, match="version"):
            get_active_config(path)


class TestChecksum:

    def test_key_order_does_not_matter(self):
        assert compute_checksum({"a": 1, "b": [1, 2]}) == compute_checksum({"b": [1, 2], "a": 1})

    def test_content_changes_checksum(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_same_file_same_checksum(self, tmp_path):
        path = write_config(tmp_path)
        assert load_config_file(path).checksum == load_config_file(path).checksum


class TestBridges:

    def test_chain_policy(self, tmp_path):
        policy = build_chain_policy(load_config_file(write_config(tmp_path)))
        assert policy.default_chain == (Role.SECTION_HEAD, Role.SCM_HEAD, Role.PJO)
        assert policy.roles_for("rgn") == (Role.SECTION_HEAD, Role.SCM_HEAD)
        assert policy.roles_for("ACME") == policy.default_chain

    def test_workflow_settings(self, tmp_path, session):
        config = load_config_file(write_config(tmp_path))
        settings = build_workflow_settings(config)
        assert settings["max_sequence"] == build_allocator_settings(config) == 500
        assert settings["lock_timeout_ms"] == 2000
        # The settings are accepted as-is by the workflow service.
        RequestWorkflowService(session, **settings)


class TestTrace:

    def test_trace_logged(self, tmp_path, captured_logs):
        path = write_config(tmp_path)
        config = get_active_config(path)
        traces = [r for r in captured_logs() if r["message"] == "PROCUREMENT_CONFIG_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["logger"] == "procurement_kernel.config"
        assert trace["config_set_id"] == "test-set"
        assert trace["config_set_version"] == 2
        assert trace["checksum"] == config.checksum
        assert trace["override_count"] == 1
