"""Resolve the upstream Anubis should forward to."""

import logging

from kubernetes.client.rest import ApiException

from .errors import MalformedIngressError, PortNotFoundError


logger = logging.getLogger(__name__)


def select_backend(ingress):
    """
    Return the single V1IngressServiceBackend Anubis wraps.

    The default backend wins, otherwise the first path of the first rule
    is used. An Ingress can route to many backends; only this one is
    ever wrapped.
    """
    spec = ingress.spec
    if spec is None:
        raise MalformedIngressError("ingress has no spec")

    if spec.default_backend is not None:
        backend = spec.default_backend
        where = 'default backend'
    else:
        if not spec.rules:
            raise MalformedIngressError("no rules or default backend in ingress")

        rule = spec.rules[0]
        if rule.http is None:
            raise MalformedIngressError("ingress rule 0 HTTP was nil")
        if not rule.http.paths:
            raise MalformedIngressError("ingress rule 0 paths was empty")

        backend = rule.http.paths[0].backend
        where = 'rule 0 path 0'

    if backend is None or backend.service is None:
        raise MalformedIngressError(f"ingress {where} is not a service backend")

    port = backend.service.port
    if port is None or (not port.name and not port.number):
        raise MalformedIngressError(f"ingress {where} has no service port")

    return backend.service


class TargetResolver:
    """Turns a service backend into an in-cluster URL"""

    def __init__(self, core_v1, request_timeout=None):
        self.v1 = core_v1
        self.request_timeout = request_timeout

    def resolve(self, namespace: str, service_backend) -> str:
        """Return http://<service>.<namespace>.svc.cluster.local:<port> for the backend"""
        port = service_backend.port.number
        port_name = service_backend.port.name

        # Named ports need the Service to translate them to a number
        if port_name:
            port = self._lookup_port(namespace, service_backend.name, port_name)

        return f"http://{service_backend.name}.{namespace}.svc.cluster.local:{port}"

    def _lookup_port(self, namespace, service_name, port_name):
        try:
            svc = self.v1.read_namespaced_service(
                name=service_name,
                namespace=namespace,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            raise PortNotFoundError(
                f"failed to look up service {namespace}/{service_name} for port name translation: {e.reason}"
            ) from e

        for svc_port in (svc.spec.ports if svc.spec else None) or []:
            if svc_port.name == port_name:
                logger.debug(f"Resolved port {port_name} of {namespace}/{service_name} to {svc_port.port}")
                return svc_port.port

        raise PortNotFoundError(f"failed to find port {port_name} in service {namespace}/{service_name}")
