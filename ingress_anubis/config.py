"""
Process-wide configuration
Read once at startup from environment variables
"""

import os
import re
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .errors import ConfigError


logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset(['1', 't', 'T', 'TRUE', 'true', 'True'])
_FALSE_VALUES = frozenset(['0', 'f', 'F', 'FALSE', 'false', 'False'])
_INT_RE = re.compile(r'^[+-]?[0-9]+$')


def parse_bool(value: str) -> bool:
    """Parse a boolean the way the annotations document it, raising ValueError otherwise"""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def parse_int(value: str) -> int:
    """Parse a plain decimal integer, raising ValueError otherwise"""
    if not _INT_RE.match(value):
        raise ValueError(f"invalid integer {value!r}")
    return int(value)


def parse_port(value: str) -> int:
    port = parse_int(value)
    if not 0 < port < 65536:
        raise ValueError(f"port {port} out of range")
    return port


def parse_map(value: str, separator: str = ':') -> Dict[str, str]:
    """
    Parse "key<sep>value,key2<sep>value2" into a dict.
    Only the first separator of each pair splits, so values may contain it.
    """
    result = {}
    if not value or not value.strip():
        return result

    for pair in value.split(','):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, val = pair.partition(separator)
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"invalid map entry {pair!r}, expected key{separator}value")
        result[key] = val.strip()
    return result


def _parse_json_list(name: str, raw: Optional[str]) -> List[dict]:
    # Malformed input degrades to an empty list, but is reported
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring {name}: not valid JSON: {e}")
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        logger.warning(f"Ignoring {name}: expected a JSON list of objects")
        return []
    return value


@dataclass(frozen=True)
class DirectiveDefaults:
    """Defaults applied to every annotation directive the Ingress does not set"""

    difficulty: int = 4
    serve_robots_txt: bool = True
    og_passthrough: bool = True
    metrics_port: int = 9090


@dataclass(frozen=True)
class Config:
    # Namespace the operator runs in; every generated resource lands here
    namespace: str = 'ingress-anubis'

    anubis_image: str = 'ghcr.io/techarohq/anubis'
    anubis_version: str = 'v1.14.2'

    # ingressClassName claimed by this operator, and the one the child Ingress is handed to
    ingress_class_name: str = 'anubis'
    wrapped_ingress_class_name: str = 'nginx'

    leader_election: bool = True

    environment_variables: Dict[str, str] = field(default_factory=dict)
    directive_environment: Dict[str, str] = field(default_factory=dict)
    env_from_configmap: Optional[str] = None
    env_from_secret: Optional[str] = None

    pod_annotations: Dict[str, str] = field(default_factory=dict)
    volumes: List[dict] = field(default_factory=list)
    volume_mounts: List[dict] = field(default_factory=list)

    directive_defaults: DirectiveDefaults = field(default_factory=DirectiveDefaults)

    shared_dir: str = '/shared'
    request_timeout: float = 30.0

    @property
    def anubis_image_ref(self) -> str:
        return f"{self.anubis_image}:{self.anubis_version}"


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from environment variables"""
    if environ is None:
        environ = os.environ

    def get(name, default=None):
        value = environ.get(name)
        if value is None or value == '':
            return default
        return value

    def typed(name, parser, default):
        raw = get(name)
        if raw is None:
            return default
        try:
            return parser(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {name}: {e}") from e

    def timeout(raw):
        value = float(raw)
        if value <= 0:
            raise ValueError(f"timeout must be positive, got {raw!r}")
        return value

    defaults = DirectiveDefaults(
        difficulty=typed('DEFAULT_DIFFICULTY', parse_int, 4),
        serve_robots_txt=typed('DEFAULT_SERVE_ROBOTS_TXT', parse_bool, True),
        og_passthrough=typed('DEFAULT_OG_PASSTHROUGH', parse_bool, True),
        metrics_port=typed('DEFAULT_METRICS_PORT', parse_port, 9090),
    )

    return Config(
        namespace=get('NAMESPACE', 'ingress-anubis'),
        anubis_image=get('ANUBIS_IMAGE', 'ghcr.io/techarohq/anubis'),
        anubis_version=get('ANUBIS_VERSION', 'v1.14.2'),
        ingress_class_name=get('INGRESS_CLASS_NAME', 'anubis'),
        wrapped_ingress_class_name=get('WRAPPED_INGRESS_CLASS_NAME', 'nginx'),
        leader_election=typed('LEADER_ELECTION', parse_bool, True),
        environment_variables=typed('ENVIRONMENT_VARIABLES', parse_map, {}),
        directive_environment=typed('DIRECTIVE_ENVIRONMENT_VARIABLES', parse_map, {}),
        env_from_configmap=get('ENV_FROM_CM'),
        env_from_secret=get('ENV_FROM_SECRET'),
        pod_annotations=typed('POD_ANNOTATIONS', parse_map, {}),
        volumes=_parse_json_list('VOLUMES', get('VOLUMES')),
        volume_mounts=_parse_json_list('VOLUME_MOUNTS', get('VOLUME_MOUNTS')),
        directive_defaults=defaults,
        shared_dir=get('SHARED_DIR', '/shared'),
        request_timeout=typed('REQUEST_TIMEOUT', timeout, 30.0),
    )
