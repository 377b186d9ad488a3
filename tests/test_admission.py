import json
import unittest
from unittest import mock

import jsonpatch
import pytest

from multiarcher.admission.engine import (
    KIND_DAEMONSET,
    KIND_POD,
    PATCH_TYPE_JSON,
    AdmissionDecision,
    AdmissionEngine,
    build_patch,
    pod_spec_of,
    process_admission_review,
)
from multiarcher.cache.store import CacheKey, InMemoryCache
from multiarcher.common.deadline import Deadline
from multiarcher.errors import (
    AdmissionError,
    InvalidAdmissionRequest,
    ObjectDecodeError,
    PatchConstructionError,
    UnsupportedKindError,
)
from multiarcher.kube.namespaces import DISABLED_ANNOTATION, NamespaceFilter
from multiarcher.kube.selectors import LabelSelector
from tests.fakes import (
    FakeInspector,
    FakeKube,
    arch_config,
    basic_auth,
    daemonset,
    decode_patch,
    docker_config_secret,
    pod,
    review_body,
)

ARM64_TOLERATION = {"key": "arch", "operator": "Equal", "value": "arm64", "effect": "NoSchedule"}
AMD64_TOLERATION = {"key": "arch", "operator": "Equal", "value": "amd64", "effect": "NoSchedule"}

PLATFORMS = {
    "multi:1": ["linux/amd64", "linux/arm64"],
    "arm-only:1": ["linux/arm64"],
    "amd-only:1": ["linux/amd64"],
}


def _engine(kube=None, namespace_filter=None, inspector=None):
    inspector = inspector or FakeInspector(platforms=PLATFORMS)
    engine = AdmissionEngine(
        cache=InMemoryCache(100),
        config=arch_config(),
        inspector=inspector,
        kube=kube,
        namespace_filter=namespace_filter,
    )
    return engine, inspector


def _patched(obj, review):
    return jsonpatch.apply_patch(obj, decode_patch(review))


class AdmissionScenarioTests(unittest.TestCase):
    def test_multi_arch_pod_gets_both_tolerations(self) -> None:
        engine, _ = _engine()
        obj = pod(["multi:1"], tolerations=[{"key": "existing", "operator": "Exists"}])
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj))

        self.assertTrue(review.response.allowed)
        self.assertEqual(review.response.patch_type, PATCH_TYPE_JSON)
        patched = _patched(obj, review)
        self.assertEqual(
            patched["spec"]["tolerations"],
            [{"key": "existing", "operator": "Exists"}, ARM64_TOLERATION, AMD64_TOLERATION],
        )
        self.assertEqual(len(decode_patch(review)), 2)

    def test_daemonset_template_and_resubmission(self) -> None:
        engine, _ = _engine()
        obj = daemonset(["arm-only:1"])
        review = engine.process(Deadline.none(), review_body(KIND_DAEMONSET, obj))

        patched = _patched(obj, review)
        self.assertEqual(patched["spec"]["template"]["spec"]["tolerations"], [ARM64_TOLERATION])

        again = engine.process(Deadline.none(), review_body(KIND_DAEMONSET, patched))
        self.assertTrue(again.response.allowed)
        self.assertEqual(decode_patch(again), [])

    def test_unsupported_kind_is_an_error(self) -> None:
        engine, _ = _engine()
        with self.assertRaises(UnsupportedKindError) as ctx:
            engine.process(Deadline.none(), review_body("Deployment", {"metadata": {"name": "web"}}))
        self.assertIn("Deployment", str(ctx.exception))

    def test_failed_lookup_excludes_platform_for_whole_workload(self) -> None:
        engine, _ = _engine()
        obj = pod(["multi:1", "missing:1"])
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj))
        self.assertIsNone(review.response.patch)
        self.assertIsNone(review.response.patch_type)

    def test_no_common_platform_means_no_patch(self) -> None:
        engine, _ = _engine()
        review = engine.process(Deadline.none(), review_body(KIND_POD, pod(["arm-only:1", "amd-only:1"])))
        wire = review.to_wire()
        self.assertEqual(wire["response"], {"uid": "uid-1", "allowed": True})

    def test_patch_is_deterministic(self) -> None:
        engine, _ = _engine()
        body = review_body(KIND_POD, pod(["multi:1"]))
        first = engine.process(Deadline.none(), body)
        second = engine.process(Deadline.none(), body)
        fresh, _ = _engine()
        third = fresh.process(Deadline.none(), body)
        self.assertEqual(first.response.patch, second.response.patch)
        self.assertEqual(first.response.patch, third.response.patch)

    def test_pod_without_containers_gets_every_toleration(self) -> None:
        engine, inspector = _engine()
        obj = pod([])
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj))
        self.assertEqual(_patched(obj, review)["spec"]["tolerations"], [ARM64_TOLERATION, AMD64_TOLERATION])
        self.assertEqual(inspector.calls, [])

    def test_unknown_fields_survive(self) -> None:
        engine, _ = _engine()
        obj = pod(["multi:1"], nodeSelector={"disk": "ssd"})
        obj["status"] = {"phase": "Pending"}
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj))
        for operation in decode_patch(review):
            self.assertTrue(operation["path"].startswith("/spec/tolerations"))


class AdmissionErrorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, _ = _engine()

    def test_invalid_json(self) -> None:
        with self.assertRaises(InvalidAdmissionRequest):
            self.engine.process(Deadline.none(), b"{not json")

    def test_missing_request(self) -> None:
        body = json.dumps({"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"}).encode()
        with self.assertRaises(InvalidAdmissionRequest):
            self.engine.process(Deadline.none(), body)

    def test_missing_object(self) -> None:
        with self.assertRaises(ObjectDecodeError):
            self.engine.process(Deadline.none(), review_body(KIND_POD, None))

    def test_object_that_does_not_decode(self) -> None:
        obj = pod([])
        obj["spec"]["containers"] = "nope"
        with self.assertRaises(ObjectDecodeError):
            self.engine.process(Deadline.none(), review_body(KIND_POD, obj))

    def test_patch_failure_is_fatal(self) -> None:
        with mock.patch.object(jsonpatch, "make_patch", side_effect=jsonpatch.JsonPatchException("boom")):
            with self.assertRaises(PatchConstructionError):
                self.engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"])))

    def test_errors_share_one_base(self) -> None:
        for error in (InvalidAdmissionRequest, ObjectDecodeError, PatchConstructionError, UnsupportedKindError):
            self.assertTrue(issubclass(error, AdmissionError))


class AdmissionSkipTests(unittest.TestCase):
    def test_workload_annotation_skips(self) -> None:
        engine, inspector = _engine()
        obj = pod(["multi:1"])
        obj["metadata"]["annotations"] = {DISABLED_ANNOTATION: "true"}
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj))
        self.assertIsNone(review.response.patch)
        self.assertTrue(review.response.allowed)
        self.assertEqual(inspector.calls, [])

    def test_ignored_namespace_skips_without_api_calls(self) -> None:
        kube = FakeKube()
        engine, _ = _engine(kube=kube, namespace_filter=NamespaceFilter(ignored=frozenset({"kube-system"})))
        review = engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"]), namespace="kube-system"))
        self.assertIsNone(review.response.patch)
        self.assertEqual(kube.calls, [])

    def test_namespace_selector_mismatch_skips(self) -> None:
        kube = FakeKube(namespaces={"team": {"metadata": {"name": "team", "labels": {"multiarch": "off"}}}})
        flt = NamespaceFilter(selector=LabelSelector.parse("multiarch=enabled"))
        engine, _ = _engine(kube=kube, namespace_filter=flt)
        review = engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"]), namespace="team"))
        self.assertIsNone(review.response.patch)

    def test_request_namespace_is_authoritative(self) -> None:
        kube = FakeKube(
            namespaces={
                "team": {"metadata": {"name": "team", "annotations": {DISABLED_ANNOTATION: "true"}}},
                "other": {"metadata": {"name": "other"}},
            }
        )
        engine, _ = _engine(kube=kube)
        obj = pod(["multi:1"], namespace="other")
        review = engine.process(Deadline.none(), review_body(KIND_POD, obj, namespace="team"))
        self.assertIsNone(review.response.patch)
        self.assertIn(("namespace", "team"), kube.calls)
        self.assertNotIn(("namespace", "other"), kube.calls)

    def test_object_namespace_is_used_when_request_has_none(self) -> None:
        kube = FakeKube(namespaces={"other": {"metadata": {"name": "other"}}})
        engine, _ = _engine(kube=kube)
        review = engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"], namespace="other")))
        self.assertIsNotNone(review.response.patch)
        self.assertIn(("namespace", "other"), kube.calls)

    def test_unreachable_namespace_does_not_skip(self) -> None:
        engine, _ = _engine(kube=FakeKube())
        review = engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"]), namespace="ghost"))
        self.assertIsNotNone(review.response.patch)


class TestAdmissionCredentials:
    def test_pull_secrets_reach_the_inspector(self) -> None:
        kube = FakeKube(
            secrets={("team", "regcred"): docker_config_secret({"ghcr.io": {"auth": basic_auth("u", "p")}})},
            namespaces={"team": {"metadata": {"name": "team"}}},
        )
        engine, inspector = _engine(kube=kube)
        obj = pod(["multi:1"], imagePullSecrets=[{"name": "regcred"}])
        engine.process(Deadline.none(), review_body(KIND_POD, obj, namespace="team"))

        hosts = inspector.calls[0][1]
        assert [host.host for host in hosts] == ["ghcr.io"]
        assert hosts[0].username == "u"

    def test_anonymous_without_namespace(self) -> None:
        engine, inspector = _engine(kube=FakeKube())
        engine.process(Deadline.none(), review_body(KIND_POD, pod(["multi:1"])))
        assert inspector.calls[0][1] is None


class TestHelpers:
    def test_decision_response_encodes_patch(self) -> None:
        response = AdmissionDecision(uid="u", patch_type=PATCH_TYPE_JSON, patch=b"[]").to_response()
        assert response.patch == "W10="
        assert response.model_dump(by_alias=True, exclude_none=True) == {
            "uid": "u",
            "allowed": True,
            "patchType": "JSONPatch",
            "patch": "W10=",
        }

    def test_pod_spec_of_creates_levels(self) -> None:
        obj = {"metadata": {}}
        spec = pod_spec_of(obj, KIND_DAEMONSET)
        spec["x"] = 1
        assert obj == {"metadata": {}, "spec": {"template": {"spec": {"x": 1}}}}

    def test_build_patch_is_compact(self) -> None:
        patch = build_patch({"a": 1}, {"a": 2})
        assert patch == b'[{"op":"replace","path":"/a","value":2}]'

    def test_process_admission_review_entry_point(self) -> None:
        cache = InMemoryCache(10)
        cache.set(CacheKey("multi:1", "linux/arm64"), True)
        cache.set(CacheKey("multi:1", "linux/amd64"), False)
        review = process_admission_review(Deadline.none(), cache, arch_config(), review_body(KIND_POD, pod(["multi:1"])))
        assert review.api_version == "admission.k8s.io/v1"
        assert review.response.uid == "uid-1"
        assert decode_patch(review) == [{"op": "add", "path": "/spec/tolerations", "value": [ARM64_TOLERATION]}]

    def test_process_admission_review_propagates_errors(self) -> None:
        engine, _ = _engine()
        with pytest.raises(UnsupportedKindError):
            process_admission_review(
                Deadline.none(), InMemoryCache(10), arch_config(), review_body("Job", {}), engine=engine
            )
