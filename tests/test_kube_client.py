import unittest

import urllib3
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from multiarcher.errors import KubeApiError, KubeUnavailableError, UpstreamError
from multiarcher.kube.client import KubernetesClientHandle, UnavailableKubeClient


class FakeCoreV1:
    def __init__(self) -> None:
        self.api_client = client.ApiClient()
        self.calls = []
        self.error = None

    def _respond(self, obj, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return obj

    def read_namespaced_secret(self, name, namespace, **kwargs):
        secret = client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            type="kubernetes.io/dockerconfigjson",
            data={".dockerconfigjson": "e30="},
        )
        return self._respond(secret, name, namespace, **kwargs)

    def read_namespaced_service_account(self, name, namespace, **kwargs):
        account = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            image_pull_secrets=[client.V1LocalObjectReference(name="regcred")],
        )
        return self._respond(account, name, namespace, **kwargs)

    def read_namespace(self, name, **kwargs):
        namespace = client.V1Namespace(
            metadata=client.V1ObjectMeta(name=name, labels={"team": "a"}),
        )
        return self._respond(namespace, name, **kwargs)


class KubernetesClientHandleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.core = FakeCoreV1()
        self.loads = 0

        def loader():
            self.loads += 1
            return self.core

        self.handle = KubernetesClientHandle(loader)

    def test_objects_are_returned_in_api_form(self) -> None:
        account = self.handle.get_service_account("team", "default")
        self.assertEqual(account["imagePullSecrets"], [{"name": "regcred"}])
        secret = self.handle.get_secret("team", "regcred")
        self.assertEqual(secret["type"], "kubernetes.io/dockerconfigjson")
        namespace = self.handle.get_namespace("team")
        self.assertEqual(namespace["metadata"]["labels"], {"team": "a"})

    def test_loader_runs_once(self) -> None:
        self.assertTrue(self.handle.available)
        self.handle.get_namespace("team")
        self.handle.get_namespace("other")
        self.assertEqual(self.loads, 1)

    def test_timeout_is_forwarded(self) -> None:
        self.handle.get_namespace("team", timeout=2.5)
        self.assertEqual(self.core.calls[0][1], {"_request_timeout": 2.5})

    def test_expired_deadline_fails_without_calling(self) -> None:
        with self.assertRaises(KubeApiError):
            self.handle.get_secret("team", "regcred", timeout=0)
        self.assertEqual(self.core.calls, [])

    def test_api_exception_is_mapped(self) -> None:
        self.core.error = ApiException(status=404, reason="Not Found")
        with self.assertRaisesRegex(KubeApiError, "404"):
            self.handle.get_secret("team", "missing")

    def test_transport_error_is_mapped(self) -> None:
        self.core.error = urllib3.exceptions.MaxRetryError(None, "/api/v1/namespaces/team", "refused")
        with self.assertRaises(KubeApiError):
            self.handle.get_namespace("team")


class StickyFailureTests(unittest.TestCase):
    def test_initialisation_error_is_sticky(self) -> None:
        attempts = []

        def loader():
            attempts.append(1)
            raise ConfigException("Service host/port is not set.")

        handle = KubernetesClientHandle(loader)
        self.assertFalse(handle.available)
        with self.assertRaises(KubeUnavailableError):
            handle.get_secret("team", "regcred")
        with self.assertRaises(KubeUnavailableError):
            handle.get_namespace("team")
        self.assertEqual(len(attempts), 1)

    def test_unavailable_client(self) -> None:
        kube = UnavailableKubeClient("offline")
        self.assertFalse(kube.available)
        for call in (
            lambda: kube.get_secret("a", "b"),
            lambda: kube.get_service_account("a", "b"),
            lambda: kube.get_namespace("a"),
        ):
            with self.assertRaises(UpstreamError):
                call()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
