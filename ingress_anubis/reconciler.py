"""
Ingress reconciler

Every pass reads the Ingress fresh, classifies it once and acts on the
classification:

1. ingressClassName != ours, not managed  -> ignore
2. ingressClassName != ours, managed      -> mirror status to the owner
3. ingressClassName == ours, managed      -> terminal error
4. being deleted                          -> prune resources, drop finalizer
5. no finalizer                           -> add finalizer, requeue
6. otherwise                              -> deployment, service, child ingress
"""

import enum
import logging
from dataclasses import dataclass

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import Config
from .directives import get_ingress_config
from .errors import (
    MalformedIngressError,
    OwnerKeyError,
    OwnerLabelError,
    ReconcileCancelled,
    TerminalError,
)
from .resources import MANAGED_LABEL, ResourceSynchronizer
from .status import StatusMirror
from .target import TargetResolver, select_backend


logger = logging.getLogger(__name__)

# Finalizer guaranteeing the generated resources are removed with the Ingress
FINALIZER = 'ingress-anubis.jaredallard.github.com/finalizer'


class IngressState(enum.Enum):
    UNCLAIMED = 'unclaimed'
    GENERATED = 'generated'
    SELF_MANAGED = 'self-managed'
    DELETING = 'deleting'
    ACTIVE_NO_FINALIZER = 'active-no-finalizer'
    ACTIVE_FINALIZED = 'active-finalized'


@dataclass(frozen=True)
class Result:
    requeue: bool = False


def is_managed(ingress) -> bool:
    labels = ingress.metadata.labels or {}
    return labels.get(MANAGED_LABEL) == 'true'


def classify(ingress, ingress_class_name: str) -> IngressState:
    """Decide what a reconciliation pass should do with this Ingress"""
    spec_class = ingress.spec.ingress_class_name if ingress.spec else None

    if spec_class != ingress_class_name:
        if is_managed(ingress):
            return IngressState.GENERATED
        return IngressState.UNCLAIMED

    if is_managed(ingress):
        return IngressState.SELF_MANAGED

    if ingress.metadata.deletion_timestamp is not None:
        return IngressState.DELETING

    if FINALIZER not in (ingress.metadata.finalizers or []):
        return IngressState.ACTIVE_NO_FINALIZER

    return IngressState.ACTIVE_FINALIZED


class Reconciler:
    """Drives one source Ingress through its lifecycle"""

    def __init__(self, config: Config, apps_v1, core_v1, networking_v1,
                 api_client=None, stop_event=None):
        self.config = config
        self.networking_v1 = networking_v1
        self.stop_event = stop_event

        api_client = api_client or client.ApiClient()
        self.resolver = TargetResolver(core_v1, request_timeout=config.request_timeout)
        self.synchronizer = ResourceSynchronizer(
            config, apps_v1, core_v1, networking_v1,
            api_client=api_client,
            stop_event=stop_event
        )
        self.status_mirror = StatusMirror(
            networking_v1,
            api_client=api_client,
            request_timeout=config.request_timeout,
            stop_event=stop_event
        )

    def _checkpoint(self):
        if self.stop_event is not None and self.stop_event.is_set():
            raise ReconcileCancelled("shutdown requested")

    def reconcile(self, namespace: str, name: str) -> Result:
        """
        Reconcile the Ingress namespace/name.

        Raises TerminalError for Ingresses that retrying cannot fix; any
        other exception is expected to be retried by the caller.
        """
        self._checkpoint()
        try:
            ingress = self.networking_v1.read_namespaced_ingress(
                name=name,
                namespace=namespace,
                _request_timeout=self.config.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"Ingress {namespace}/{name} not found, nothing to do")
                return Result()
            raise

        state = classify(ingress, self.config.ingress_class_name)

        try:
            return self._dispatch(state, ingress)
        except (MalformedIngressError, OwnerKeyError, OwnerLabelError) as e:
            logger.error(f"Ingress {namespace}/{name} cannot be reconciled: {e}")
            raise TerminalError(str(e)) from e

    def _dispatch(self, state, ingress) -> Result:
        namespace = ingress.metadata.namespace
        name = ingress.metadata.name

        if state is IngressState.UNCLAIMED:
            return Result()

        if state is IngressState.GENERATED:
            self.status_mirror.mirror(ingress)
            return Result()

        if state is IngressState.SELF_MANAGED:
            raise TerminalError(f"attempted to reconcile ingress {namespace}/{name} owned by self")

        if state is IngressState.DELETING:
            return self._finalize(ingress)

        if state is IngressState.ACTIVE_NO_FINALIZER:
            logger.info(f"Adding finalizer to Ingress: {namespace}/{name}")
            self._patch_finalizers(ingress, list(ingress.metadata.finalizers or []) + [FINALIZER])
            return Result(requeue=True)

        return self._sync(ingress)

    def _sync(self, ingress) -> Result:
        namespace = ingress.metadata.namespace
        name = ingress.metadata.name
        logger.info(f"Reconciling Ingress: {namespace}/{name}")

        service_backend = select_backend(ingress)
        icfg = get_ingress_config(ingress, self.config.directive_defaults)

        self._checkpoint()
        target = self.resolver.resolve(namespace, service_backend)
        logger.info(f"  Target: {target}")

        self.synchronizer.sync(ingress, icfg, target)

        logger.info(f"✓ Successfully reconciled Ingress: {namespace}/{name}")
        return Result()

    def _finalize(self, ingress) -> Result:
        namespace = ingress.metadata.namespace
        name = ingress.metadata.name
        logger.info(f"Ingress {namespace}/{name} was deleted, pruning resources")

        self.synchronizer.prune(name)

        finalizers = list(ingress.metadata.finalizers or [])
        if FINALIZER in finalizers:
            finalizers.remove(FINALIZER)
            try:
                self._patch_finalizers(ingress, finalizers)
            except ApiException as e:
                if e.status != 404:
                    raise

        logger.info(f"✓ Finished pruning resources and removed finalizer: {namespace}/{name}")
        return Result()

    def _patch_finalizers(self, ingress, finalizers):
        self._checkpoint()
        patch = [
            {'op': 'test', 'path': '/metadata/resourceVersion', 'value': ingress.metadata.resource_version},
            {'op': 'add', 'path': '/metadata/finalizers', 'value': finalizers},
        ]
        self.networking_v1.patch_namespaced_ingress(
            name=ingress.metadata.name,
            namespace=ingress.metadata.namespace,
            body=patch,
            _request_timeout=self.config.request_timeout
        )
