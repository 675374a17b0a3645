"""
Generated resources
Builds and applies the Deployment, Service and child Ingress that wrap a source Ingress
"""

import copy
import enum
import logging
from typing import Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import Config
from .directives import IngressConfig
from .errors import OwnerKeyError, ReconcileCancelled


logger = logging.getLogger(__name__)

# Label used to track what is managed by this operator
MANAGED_LABEL = 'ingress-anubis.jaredallard.github.com/managed'

# Label holding "<namespace>--<name>" of the source Ingress
OWNING_LABEL = 'ingress-anubis.jaredallard.github.com/owner'

OWNER_SEPARATOR = '--'
NAME_PREFIX = 'ia-'

HTTP_PORT = 8080
HTTP_PORT_NAME = 'http'
METRICS_PORT_NAME = 'http-metrics'
METRICS_PATH = '/metrics'


class OperationResult(enum.Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    UNCHANGED = 'unchanged'


def generated_name(name: str) -> str:
    """Name shared by the Deployment, Service and child Ingress of a source Ingress"""
    return NAME_PREFIX + name


def owner_key(namespace: str, name: str) -> str:
    for part in (namespace, name):
        if OWNER_SEPARATOR in part:
            raise OwnerKeyError(
                f"cannot encode owner {namespace}/{name}: {part!r} contains {OWNER_SEPARATOR!r}"
            )
    return f"{namespace}{OWNER_SEPARATOR}{name}"


def managed_labels(namespace: str, name: str) -> Dict[str, str]:
    return {
        'app.kubernetes.io/instance': 'anubis',
        'app.kubernetes.io/name': 'anubis',
        'app.kubernetes.io/managed-by': 'ingress-anubis',
        MANAGED_LABEL: 'true',
        OWNING_LABEL: owner_key(namespace, name),
    }


def build_environment(config: Config, icfg: IngressConfig, target: str) -> Dict[str, str]:
    """
    Merge the Anubis environment, lowest precedence first: process-wide
    static variables, process-wide directive variables, the Ingress' own
    env directive, then the values the operator always controls.
    """
    controlled = {
        'BIND': f":{HTTP_PORT}",
        'DIFFICULTY': str(icfg.difficulty),
        'METRICS_BIND': f":{icfg.metrics_port}",
        'SERVE_ROBOTS_TXT': 'true' if icfg.serve_robots_txt else 'false',
        'TARGET': target,
        'OG_PASSTHROUGH': 'true' if icfg.og_passthrough else 'false',
    }
    return {
        **config.environment_variables,
        **config.directive_environment,
        **icfg.environment,
        **controlled,
    }


def build_env_from(config: Config, icfg: IngressConfig) -> List[client.V1EnvFromSource]:
    env_from = []
    for cm, secret in ((config.env_from_configmap, config.env_from_secret),
                       (icfg.env_from_configmap, icfg.env_from_secret)):
        if cm:
            env_from.append(client.V1EnvFromSource(
                config_map_ref=client.V1ConfigMapEnvSource(name=cm)
            ))
        if secret:
            env_from.append(client.V1EnvFromSource(
                secret_ref=client.V1SecretEnvSource(name=secret)
            ))
    return env_from


def build_deployment(config: Config, icfg: IngressConfig, target: str, namespace: str, name: str) -> client.V1Deployment:
    labels = managed_labels(namespace, name)
    env = build_environment(config, icfg, target)

    container = client.V1Container(
        name='main',
        image=config.anubis_image_ref,
        env=[client.V1EnvVar(name=k, value=v) for k, v in sorted(env.items())],
        env_from=build_env_from(config, icfg) or None,
        ports=[
            client.V1ContainerPort(name=HTTP_PORT_NAME, container_port=HTTP_PORT),
            client.V1ContainerPort(name=METRICS_PORT_NAME, container_port=icfg.metrics_port),
        ],
        readiness_probe=client.V1Probe(
            failure_threshold=3,
            http_get=client.V1HTTPGetAction(path=METRICS_PATH, port=icfg.metrics_port)
        ),
        volume_mounts=copy.deepcopy(config.volume_mounts) or None,
        security_context=client.V1SecurityContext(
            allow_privilege_escalation=False,
            run_as_user=1000,
            run_as_group=1000,
            run_as_non_root=True,
            read_only_root_filesystem=True,
            capabilities=client.V1Capabilities(drop=['ALL']),
            seccomp_profile=client.V1SeccompProfile(type='RuntimeDefault')
        )
    )

    return client.V1Deployment(
        api_version='apps/v1',
        kind='Deployment',
        metadata=client.V1ObjectMeta(
            name=generated_name(name),
            namespace=config.namespace,
            labels=dict(labels)
        ),
        spec=client.V1DeploymentSpec(
            # Anubis keeps its challenge state in memory, so one replica only
            replicas=1,
            strategy=client.V1DeploymentStrategy(type='Recreate'),
            selector=client.V1LabelSelector(match_labels=dict(labels)),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(
                    labels=dict(labels),
                    annotations=dict(config.pod_annotations) or None
                ),
                spec=client.V1PodSpec(
                    containers=[container],
                    volumes=copy.deepcopy(config.volumes) or None
                )
            )
        )
    )


def build_service(config: Config, namespace: str, name: str) -> client.V1Service:
    labels = managed_labels(namespace, name)
    return client.V1Service(
        api_version='v1',
        kind='Service',
        metadata=client.V1ObjectMeta(
            name=generated_name(name),
            namespace=config.namespace,
            labels=dict(labels)
        ),
        spec=client.V1ServiceSpec(
            type='ClusterIP',
            selector=dict(labels),
            ports=[client.V1ServicePort(
                name=HTTP_PORT_NAME,
                port=HTTP_PORT,
                protocol='TCP',
                target_port=HTTP_PORT_NAME
            )]
        )
    )


def build_child_ingress(config: Config, icfg: IngressConfig, source) -> client.V1Ingress:
    """
    Copy the source Ingress into the operator namespace with every backend
    pointing at the Anubis Service.
    """
    namespace = source.metadata.namespace
    name = source.metadata.name

    spec = copy.deepcopy(source.spec)
    spec.ingress_class_name = icfg.ingress_class or config.wrapped_ingress_class_name

    def anubis_backend():
        return client.V1IngressBackend(
            service=client.V1IngressServiceBackend(
                name=generated_name(name),
                port=client.V1ServiceBackendPort(name=HTTP_PORT_NAME)
            )
        )

    if spec.default_backend is not None:
        spec.default_backend = anubis_backend()
    for rule in spec.rules or []:
        if rule.http is None:
            continue
        for path in rule.http.paths or []:
            path.backend = anubis_backend()

    return client.V1Ingress(
        api_version='networking.k8s.io/v1',
        kind='Ingress',
        metadata=client.V1ObjectMeta(
            name=generated_name(name),
            namespace=config.namespace,
            labels=managed_labels(namespace, name),
            annotations=copy.deepcopy(source.metadata.annotations)
        ),
        spec=spec
    )


def _contains(live, desired) -> bool:
    """True when every value set in desired is already present in live"""
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return not desired and live is None
        for key, value in desired.items():
            if key not in live:
                if value in (None, {}, []):
                    continue
                return False
            if not _contains(live[key], value):
                return False
        return True
    if isinstance(desired, list):
        if not isinstance(live, list) or len(live) != len(desired):
            return not desired and live is None
        return all(_contains(lv, dv) for lv, dv in zip(live, desired))
    return live == desired


def _dig(obj, path):
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        elif isinstance(obj, dict):
            obj = obj.get(key)
        else:
            return None
    return obj or None


_CONTAINER = ('spec', 'template', 'spec', 'containers', 0)


def _deployment_fields(obj):
    """Fields of a serialized Deployment the operator sets and the API server never defaults"""
    volumes = _dig(obj, ('spec', 'template', 'spec', 'volumes')) or []
    return {
        'strategy': _dig(obj, ('spec', 'strategy')),
        'podAnnotations': _dig(obj, ('spec', 'template', 'metadata', 'annotations')),
        'envFrom': _dig(obj, _CONTAINER + ('envFrom',)),
        'volumeMounts': _dig(obj, _CONTAINER + ('volumeMounts',)),
        # Volume sources pick up defaults such as defaultMode, so only names are compared
        'volumes': [v.get('name') for v in volumes] or None,
    }


def _service_fields(obj):
    return {'selector': _dig(obj, ('spec', 'selector'))}


def _ingress_fields(obj):
    return {
        'annotations': _dig(obj, ('metadata', 'annotations')),
        'spec': _dig(obj, ('spec',)),
    }


def _merge_labels(live, desired):
    labels = dict(live.metadata.labels or {})
    labels.update(desired.metadata.labels or {})
    live.metadata.labels = labels


def _apply_deployment(live, desired):
    _merge_labels(live, desired)
    # spec.selector is immutable once the Deployment exists
    selector = live.spec.selector if live.spec else None
    live.spec = desired.spec
    if selector is not None:
        live.spec.selector = selector


def _apply_service(live, desired):
    _merge_labels(live, desired)
    # Keep server-assigned fields such as clusterIP
    live.spec.type = desired.spec.type
    live.spec.selector = desired.spec.selector
    live.spec.ports = desired.spec.ports


def _apply_ingress(live, desired):
    _merge_labels(live, desired)
    live.metadata.annotations = desired.metadata.annotations
    live.spec = desired.spec


class ResourceSynchronizer:
    """Creates, updates and prunes the resources generated for a source Ingress"""

    def __init__(self, config: Config, apps_v1, core_v1, networking_v1,
                 api_client=None, stop_event=None):
        self.config = config
        self.apps_v1 = apps_v1
        self.v1 = core_v1
        self.networking_v1 = networking_v1
        self.api_client = api_client or client.ApiClient()
        self.stop_event = stop_event

    @property
    def _timeout(self):
        return self.config.request_timeout

    def _checkpoint(self):
        if self.stop_event is not None and self.stop_event.is_set():
            raise ReconcileCancelled("shutdown requested")

    def sync(self, source, icfg: IngressConfig, target: str) -> Dict[str, OperationResult]:
        """Ensure the Deployment, Service and child Ingress match the source Ingress"""
        namespace = source.metadata.namespace
        name = source.metadata.name
        return {
            'Deployment': self.sync_deployment(icfg, target, namespace, name),
            'Service': self.sync_service(namespace, name),
            'Ingress': self.sync_ingress(source, icfg),
        }

    def sync_deployment(self, icfg, target, namespace, name) -> OperationResult:
        desired = build_deployment(self.config, icfg, target, namespace, name)
        return self._create_or_update(
            'Deployment',
            desired,
            read=self.apps_v1.read_namespaced_deployment,
            create=self.apps_v1.create_namespaced_deployment,
            replace=self.apps_v1.replace_namespaced_deployment,
            apply=_apply_deployment,
            owned=_deployment_fields
        )

    def sync_service(self, namespace, name) -> OperationResult:
        desired = build_service(self.config, namespace, name)
        return self._create_or_update(
            'Service',
            desired,
            read=self.v1.read_namespaced_service,
            create=self.v1.create_namespaced_service,
            replace=self.v1.replace_namespaced_service,
            apply=_apply_service,
            owned=_service_fields
        )

    def sync_ingress(self, source, icfg) -> OperationResult:
        desired = build_child_ingress(self.config, icfg, source)
        return self._create_or_update(
            'Ingress',
            desired,
            read=self.networking_v1.read_namespaced_ingress,
            create=self.networking_v1.create_namespaced_ingress,
            replace=self.networking_v1.replace_namespaced_ingress,
            apply=_apply_ingress,
            owned=_ingress_fields
        )

    def _create_or_update(self, kind, desired, read, create, replace, apply, owned):
        name = desired.metadata.name
        namespace = desired.metadata.namespace

        self._checkpoint()
        try:
            live = read(name=name, namespace=namespace, _request_timeout=self._timeout)
        except ApiException as e:
            if e.status != 404:
                raise
            self._checkpoint()
            create(namespace=namespace, body=desired, _request_timeout=self._timeout)
            logger.info(f"  Created {kind}: {namespace}/{name}")
            return OperationResult.CREATED

        before = self.api_client.sanitize_for_serialization(live)
        apply(live, desired)
        after = self.api_client.sanitize_for_serialization(live)

        # Set fields must already match; owned fields must match exactly so removals are noticed
        unchanged = _contains(before, after) and owned(before) == owned(after)
        if unchanged:
            logger.debug(f"  {kind} up to date: {namespace}/{name}")
            return OperationResult.UNCHANGED

        # live still carries its resourceVersion, so a concurrent write surfaces as a 409
        self._checkpoint()
        replace(name=name, namespace=namespace, body=live, _request_timeout=self._timeout)
        logger.info(f"  Updated {kind}: {namespace}/{name}")
        return OperationResult.UPDATED

    def prune(self, name: str) -> List[str]:
        """Delete the generated resources for a source Ingress, ignoring any already gone"""
        generated = generated_name(name)
        namespace = self.config.namespace
        deleted = []

        for kind, delete in (
            ('Ingress', self.networking_v1.delete_namespaced_ingress),
            ('Service', self.v1.delete_namespaced_service),
            ('Deployment', self.apps_v1.delete_namespaced_deployment),
        ):
            self._checkpoint()
            try:
                delete(
                    name=generated,
                    namespace=namespace,
                    propagation_policy='Background',
                    _request_timeout=self._timeout
                )
            except ApiException as e:
                if e.status != 404:
                    logger.error(f"Failed to delete {kind} {namespace}/{generated}: {e.reason}")
                    raise
                logger.debug(f"  {kind} already absent: {namespace}/{generated}")
                continue
            logger.info(f"  Deleted {kind}: {namespace}/{generated}")
            deleted.append(kind)

        return deleted
