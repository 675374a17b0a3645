"""Tests for backend selection and target resolution."""

import pytest
from kubernetes import client

from ingress_anubis.errors import MalformedIngressError, PortNotFoundError
from ingress_anubis.target import TargetResolver, select_backend

from conftest import FakeCoreV1Api, make_ingress, make_rule, service_backend


def make_service(cluster, ports):
    cluster.add('Service', client.V1Service(
        metadata=client.V1ObjectMeta(name='backend', namespace='shop'),
        spec=client.V1ServiceSpec(ports=[
            client.V1ServicePort(name=name, port=port) for name, port in ports
        ])
    ))


def test_numeric_port_skips_lookup(cluster) -> None:
    """Test a numeric port is used without reading the Service."""
    resolver = TargetResolver(FakeCoreV1Api(cluster))
    target = resolver.resolve('shop', service_backend(number=8080))
    assert target == 'http://backend.shop.svc.cluster.local:8080'
    assert cluster.calls == []


def test_named_port(cluster) -> None:
    """Test a named port is translated through the Service."""
    make_service(cluster, [('metrics', 9100), ('web', 8081)])
    resolver = TargetResolver(FakeCoreV1Api(cluster))
    target = resolver.resolve('shop', service_backend(port_name='web'))
    assert target == 'http://backend.shop.svc.cluster.local:8081'
    assert cluster.calls == [('read', 'Service', 'shop', 'backend')]


def test_named_port_missing(cluster) -> None:
    """Test a Service without the named port fails with a descriptive error."""
    make_service(cluster, [('metrics', 9100)])
    resolver = TargetResolver(FakeCoreV1Api(cluster))
    with pytest.raises(PortNotFoundError, match='failed to find port web in service shop/backend'):
        resolver.resolve('shop', service_backend(port_name='web'))


def test_named_port_service_missing(cluster) -> None:
    """Test a missing Service is reported as a port lookup failure."""
    resolver = TargetResolver(FakeCoreV1Api(cluster))
    with pytest.raises(PortNotFoundError, match='port name translation'):
        resolver.resolve('shop', service_backend(port_name='web'))


def test_select_default_backend_first() -> None:
    """Test the default backend wins over rules."""
    ing = make_ingress(
        default_backend=client.V1IngressBackend(service=service_backend(name='fallback', number=80)),
        rules=[make_rule()]
    )
    assert select_backend(ing).name == 'fallback'


def test_select_first_rule_first_path() -> None:
    """Test only the first path of the first rule is used."""
    rules = [
        make_rule(paths=(('/', 8080), ('/api', 9000))),
        make_rule(host='other.example.com', paths=(('/', 7000),)),
    ]
    backend = select_backend(make_ingress(rules=rules))
    assert backend.port.number == 8080


@pytest.mark.parametrize(
    ("rules", "message"),
    [
        ([], 'no rules or default backend'),
        ([client.V1IngressRule(host='shop.example.com')], 'HTTP was nil'),
        ([client.V1IngressRule(http=client.V1HTTPIngressRuleValue(paths=[]))], 'paths was empty'),
    ],
)
def test_select_malformed(rules, message) -> None:
    """Test Ingresses without anything to wrap are rejected."""
    with pytest.raises(MalformedIngressError, match=message):
        select_backend(make_ingress(rules=rules))


def test_select_resource_backend() -> None:
    """Test a non-service backend is rejected."""
    backend = client.V1IngressBackend(
        resource=client.V1TypedLocalObjectReference(api_group='k8s.example.com', kind='Bucket', name='static')
    )
    with pytest.raises(MalformedIngressError, match='not a service backend'):
        select_backend(make_ingress(default_backend=backend))
