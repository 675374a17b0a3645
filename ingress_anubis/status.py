"""Mirror the status of a child Ingress onto the Ingress that owns it."""

import logging

from kubernetes import client
from kubernetes.client.rest import ApiException

from .errors import OwnerLabelError, ReconcileCancelled
from .resources import OWNER_SEPARATOR, OWNING_LABEL


logger = logging.getLogger(__name__)


def parse_owner(value: str):
    """Split an owner label value into (namespace, name)"""
    parts = value.split(OWNER_SEPARATOR)
    if len(parts) != 2 or not all(parts):
        raise OwnerLabelError(value)
    return parts[0], parts[1]


class StatusMirror:

    def __init__(self, networking_v1, api_client=None, request_timeout=None, stop_event=None):
        self.networking_v1 = networking_v1
        self.api_client = api_client or client.ApiClient()
        self.request_timeout = request_timeout
        self.stop_event = stop_event

    def _checkpoint(self):
        if self.stop_event is not None and self.stop_event.is_set():
            raise ReconcileCancelled("shutdown requested")

    def mirror(self, ingress) -> bool:
        """
        Copy ingress.status onto the owner named by its owner label.
        Returns False when there is no owner to update.
        """
        labels = ingress.metadata.labels or {}
        owner = labels.get(OWNING_LABEL)
        if owner is None:
            return False

        namespace, name = parse_owner(owner)

        self._checkpoint()
        try:
            owning = self.networking_v1.read_namespaced_ingress(
                name=name,
                namespace=namespace,
                _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                logger.info(f"Owner {namespace}/{name} of {ingress.metadata.namespace}/{ingress.metadata.name} is gone, skipping status")
                return False
            raise

        status = self.api_client.sanitize_for_serialization(ingress.status) or {}
        patch = [
            {'op': 'test', 'path': '/metadata/resourceVersion', 'value': owning.metadata.resource_version},
            {'op': 'add', 'path': '/status', 'value': status},
        ]
        self._checkpoint()
        self.networking_v1.patch_namespaced_ingress_status(
            name=name,
            namespace=namespace,
            body=patch,
            _request_timeout=self.request_timeout
        )
        logger.info(f"  Mirrored status of {ingress.metadata.namespace}/{ingress.metadata.name} to {namespace}/{name}")
        return True
