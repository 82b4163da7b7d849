"""Unit tests for schemas, labels, helpers and error conversion."""

import asyncio

import kopf
import pytest
from kubernetes_asyncio.client import ApiException
from marshmallow import ValidationError

from storop.common.models.labels import Labels
from storop.resources import CSIDriverDeployment
from storop.types.schemas import CSIDriverDeploymentSpecSchema, OperatorSpecSchema
from storop.utils.errors import (
    ConflictError,
    InvalidSpecError,
    TransientStoreError,
    convert_api_exception,
    to_kopf_error,
)
from storop.utils.helpers import deep_compare_dict, upsert_condition

from .conftest import csi_driver_body


class TestCSIDriverDeploymentSpecSchema:
    def test_defaults(self):
        spec = CSIDriverDeploymentSpecSchema().load({})

        assert spec.driver_name == ""
        assert spec.node_template == {}
        assert spec.controller_template is None
        assert spec.socket_loss_tolerant is False

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError):
            CSIDriverDeploymentSpecSchema().load({"nodeUpdateStrategy": "Surge"})

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            CSIDriverDeploymentSpecSchema().load({"maxConcurrentNodeUpdates": 0})

    def test_invalid_body_is_invalid_spec(self):
        with pytest.raises(InvalidSpecError):
            CSIDriverDeployment.from_body(csi_driver_body(nodeUpdateStrategy="Surge"))


class TestUpdateStrategy:
    @pytest.mark.parametrize(
        "spec, expected",
        [
            ({}, "Drain"),
            ({"socketLossTolerant": True}, "Rolling"),
            ({"socketLossTolerant": True, "nodeUpdateStrategy": "Drain"}, "Drain"),
            ({"nodeUpdateStrategy": "Rolling"}, "Rolling"),
        ],
    )
    def test_strategy(self, spec, expected):
        resource = CSIDriverDeployment.from_body(csi_driver_body(**spec))

        assert resource.update_strategy == expected


class TestOperatorSpecSchema:
    def test_management_state_default(self):
        spec = OperatorSpecSchema().load({})

        assert spec.management_state == "Managed"

    def test_management_state_values(self):
        with pytest.raises(ValidationError):
            OperatorSpecSchema().load({"managementState": "Forgotten"})


class TestLabels:
    def test_ownership_round_trip(self):
        labels = Labels.ownership("EFSProvisioner", "storage", "efs")

        assert labels.owner() == ("EFSProvisioner", "storage", "efs")

    def test_foreign_labels_have_no_owner(self):
        labels = Labels({"app.kubernetes.io/managed-by": "helm"})

        assert labels.owner() is None

    def test_selector_string(self):
        labels = Labels().include("a", "1").include("b", "2")

        assert labels.as_str() == "a=1,b=2"
        assert labels.contains(Labels({"a": "1"}))

    def test_part_of_is_truncated(self):
        labels = Labels().include_kubernetes_part_of("x" * 80)

        assert len(labels.as_dict()[Labels.KUBERNETES_PART_OF_LABEL]) == 63


class TestHelpers:
    def test_upsert_condition(self):
        conds = upsert_condition([], {"type": "Ready", "status": "True"}, "t0")
        conds = upsert_condition(conds, {"type": "Ready", "status": "True", "reason": "x"}, "t1")

        assert conds == [
            {"type": "Ready", "status": "True", "reason": "x", "lastTransitionTime": "t0"}
        ]

    def test_deep_compare_ignores_key_order(self):
        assert deep_compare_dict({"a": 1, "b": [1, 2]}, {"b": [1, 2], "a": 1})
        assert not deep_compare_dict({"a": 1}, {"a": 2})
        assert not deep_compare_dict({"a": 1}, None)


class TestErrorConversion:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (409, ConflictError),
            (429, TransientStoreError),
            (503, TransientStoreError),
            (401, TransientStoreError),
            (403, TransientStoreError),
            (422, InvalidSpecError),
        ],
    )
    def test_api_exception(self, status, expected):
        converted = convert_api_exception(ApiException(status=status, reason="x"))

        assert isinstance(converted, expected)

    def test_timeout_is_transient(self):
        assert isinstance(convert_api_exception(asyncio.TimeoutError()), TransientStoreError)

    def test_to_kopf_error(self):
        with pytest.raises(kopf.PermanentError):
            to_kopf_error(InvalidSpecError("bad"))
        with pytest.raises(kopf.TemporaryError):
            to_kopf_error(TransientStoreError("down"))
        with pytest.raises(KeyError):
            to_kopf_error(KeyError("other"))
