"""Fixtures: an in-memory stand-in for the Kubernetes API server."""

import copy
import datetime
import itertools

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from ingress_anubis.config import Config
from ingress_anubis.reconciler import Reconciler


class FakeCluster:
    """Stores objects by (kind, namespace, name) and mimics the API semantics the operator relies on"""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self._versions = itertools.count(1)

    def _next_version(self):
        return str(next(self._versions))

    def get(self, kind, namespace, name):
        return self.objects.get((kind, namespace, name))

    def calls_to(self, verb, kind=None):
        return [c for c in self.calls if c[0] == verb and (kind is None or c[1] == kind)]

    def add(self, kind, obj):
        """Seed an object as if a user had applied it"""
        obj = copy.deepcopy(obj)
        obj.metadata.resource_version = self._next_version()
        obj.metadata.creation_timestamp = datetime.datetime(2025, 1, 1)
        self.objects[(kind, obj.metadata.namespace, obj.metadata.name)] = obj
        return obj

    def read(self, kind, name, namespace):
        self.calls.append(('read', kind, namespace, name))
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise ApiException(status=404, reason='Not Found')
        return copy.deepcopy(obj)

    def create(self, kind, namespace, body):
        self.calls.append(('create', kind, namespace, body.metadata.name))
        key = (kind, namespace, body.metadata.name)
        if key in self.objects:
            raise ApiException(status=409, reason='AlreadyExists')
        self.add(kind, body)
        return copy.deepcopy(self.objects[key])

    def replace(self, kind, name, namespace, body):
        self.calls.append(('replace', kind, namespace, name))
        current = self.get(kind, namespace, name)
        if current is None:
            raise ApiException(status=404, reason='Not Found')
        if body.metadata.resource_version != current.metadata.resource_version:
            raise ApiException(status=409, reason='Conflict')
        obj = copy.deepcopy(body)
        obj.metadata.resource_version = self._next_version()
        self.objects[(kind, namespace, name)] = obj
        return copy.deepcopy(obj)

    def delete(self, kind, name, namespace):
        self.calls.append(('delete', kind, namespace, name))
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise ApiException(status=404, reason='Not Found')
        if obj.metadata.finalizers:
            obj.metadata.deletion_timestamp = datetime.datetime(2025, 1, 2)
        else:
            del self.objects[(kind, namespace, name)]

    def patch(self, kind, name, namespace, body, verb='patch'):
        self.calls.append((verb, kind, namespace, name))
        obj = self.get(kind, namespace, name)
        if obj is None:
            raise ApiException(status=404, reason='Not Found')

        for op in body:
            if op['op'] == 'test':
                assert op['path'] == '/metadata/resourceVersion'
                if op['value'] != obj.metadata.resource_version:
                    raise ApiException(status=409, reason='Conflict')
            elif op['op'] == 'add' and op['path'] == '/metadata/finalizers':
                obj.metadata.finalizers = list(op['value'])
            elif op['op'] == 'add' and op['path'] == '/status':
                obj.status = copy.deepcopy(op['value'])
            else:
                raise AssertionError(f"unsupported patch operation {op}")

        obj.metadata.resource_version = self._next_version()
        if obj.metadata.deletion_timestamp is not None and not obj.metadata.finalizers:
            del self.objects[(kind, namespace, name)]
        return copy.deepcopy(obj)


class FakeAppsV1Api:

    def __init__(self, cluster):
        self.cluster = cluster

    def read_namespaced_deployment(self, name, namespace, **kwargs):
        return self.cluster.read('Deployment', name, namespace)

    def create_namespaced_deployment(self, namespace, body, **kwargs):
        return self.cluster.create('Deployment', namespace, body)

    def replace_namespaced_deployment(self, name, namespace, body, **kwargs):
        return self.cluster.replace('Deployment', name, namespace, body)

    def delete_namespaced_deployment(self, name, namespace, **kwargs):
        return self.cluster.delete('Deployment', name, namespace)


class FakeCoreV1Api:

    def __init__(self, cluster):
        self.cluster = cluster

    def read_namespaced_service(self, name, namespace, **kwargs):
        return self.cluster.read('Service', name, namespace)

    def create_namespaced_service(self, namespace, body, **kwargs):
        return self.cluster.create('Service', namespace, body)

    def replace_namespaced_service(self, name, namespace, body, **kwargs):
        return self.cluster.replace('Service', name, namespace, body)

    def delete_namespaced_service(self, name, namespace, **kwargs):
        return self.cluster.delete('Service', name, namespace)


class FakeNetworkingV1Api:

    def __init__(self, cluster):
        self.cluster = cluster

    def read_namespaced_ingress(self, name, namespace, **kwargs):
        return self.cluster.read('Ingress', name, namespace)

    def create_namespaced_ingress(self, namespace, body, **kwargs):
        return self.cluster.create('Ingress', namespace, body)

    def replace_namespaced_ingress(self, name, namespace, body, **kwargs):
        return self.cluster.replace('Ingress', name, namespace, body)

    def delete_namespaced_ingress(self, name, namespace, **kwargs):
        return self.cluster.delete('Ingress', name, namespace)

    def patch_namespaced_ingress(self, name, namespace, body, **kwargs):
        return self.cluster.patch('Ingress', name, namespace, body)

    def patch_namespaced_ingress_status(self, name, namespace, body, **kwargs):
        return self.cluster.patch('Ingress', name, namespace, body, verb='patch_status')


def service_backend(name='backend', number=None, port_name=None):
    return client.V1IngressServiceBackend(
        name=name,
        port=client.V1ServiceBackendPort(number=number, name=port_name)
    )


def make_ingress(namespace='shop', name='web', ingress_class='anubis', default_backend=None,
                 rules=None, annotations=None, labels=None, finalizers=None):
    """Build a V1Ingress; with no backend given it defaults to backend:8080"""
    if default_backend is None and rules is None:
        default_backend = client.V1IngressBackend(service=service_backend(number=8080))
    return client.V1Ingress(
        api_version='networking.k8s.io/v1',
        kind='Ingress',
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            annotations=annotations,
            labels=labels,
            finalizers=finalizers
        ),
        spec=client.V1IngressSpec(
            ingress_class_name=ingress_class,
            default_backend=default_backend,
            rules=rules
        )
    )


def make_rule(host='shop.example.com', paths=(('/', 8080),)):
    return client.V1IngressRule(
        host=host,
        http=client.V1HTTPIngressRuleValue(paths=[
            client.V1HTTPIngressPath(
                path=path,
                path_type='Prefix',
                backend=client.V1IngressBackend(service=service_backend(number=port))
            )
            for path, port in paths
        ])
    )


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def apis(cluster):
    return FakeAppsV1Api(cluster), FakeCoreV1Api(cluster), FakeNetworkingV1Api(cluster)


@pytest.fixture
def reconciler(config, apis):
    apps_v1, core_v1, networking_v1 = apis
    return Reconciler(config, apps_v1=apps_v1, core_v1=core_v1, networking_v1=networking_v1)
