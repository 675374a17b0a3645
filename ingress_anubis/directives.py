"""
Per-Ingress configuration read from annotations.

Only the keys in ANNOTATION_KEYS are looked at, anything else on the
Ingress is ignored. A recognised key with a value that does not parse
fails the whole extraction.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from .config import DirectiveDefaults, parse_bool, parse_int, parse_map, parse_port
from .errors import DirectiveError


ANNOTATION_KEY_BASE = 'ingress-anubis.jaredallard.github.com/'

ANNOTATION_KEY_DIFFICULTY = ANNOTATION_KEY_BASE + 'difficulty'
ANNOTATION_KEY_SERVE_ROBOTS_TXT = ANNOTATION_KEY_BASE + 'serve-robots-txt'
ANNOTATION_KEY_OG_PASSTHROUGH = ANNOTATION_KEY_BASE + 'og-passthrough'
ANNOTATION_KEY_METRICS_PORT = ANNOTATION_KEY_BASE + 'metrics-port'
ANNOTATION_KEY_INGRESS_CLASS = ANNOTATION_KEY_BASE + 'ingress-class'
ANNOTATION_KEY_ENV_FROM_CM = ANNOTATION_KEY_BASE + 'env-from-cm'
ANNOTATION_KEY_ENV_FROM_SECRET = ANNOTATION_KEY_BASE + 'env-from-secret'
ANNOTATION_KEY_ENV = ANNOTATION_KEY_BASE + 'env'

ANNOTATION_KEYS = (
    ANNOTATION_KEY_DIFFICULTY,
    ANNOTATION_KEY_SERVE_ROBOTS_TXT,
    ANNOTATION_KEY_OG_PASSTHROUGH,
    ANNOTATION_KEY_METRICS_PORT,
    ANNOTATION_KEY_INGRESS_CLASS,
    ANNOTATION_KEY_ENV_FROM_CM,
    ANNOTATION_KEY_ENV_FROM_SECRET,
    ANNOTATION_KEY_ENV,
)


@dataclass(frozen=True)
class IngressConfig:
    """
    Configuration for one wrapped Ingress.

    difficulty, serve_robots_txt, og_passthrough and metrics_port are
    always set. ingress_class, env_from_configmap and env_from_secret are
    None when the Ingress does not override them. environment only holds
    variables from the Ingress itself; process-wide variables are layered
    underneath it when the Deployment is built.
    """

    difficulty: int
    serve_robots_txt: bool
    og_passthrough: bool
    metrics_port: int
    ingress_class: Optional[str] = None
    env_from_configmap: Optional[str] = None
    env_from_secret: Optional[str] = None
    environment: Dict[str, str] = field(default_factory=dict)


def _parse(key: str, value: str):
    if key == ANNOTATION_KEY_DIFFICULTY:
        parser, expected = parse_int, 'int'
    elif key in (ANNOTATION_KEY_SERVE_ROBOTS_TXT, ANNOTATION_KEY_OG_PASSTHROUGH):
        parser, expected = parse_bool, 'bool'
    elif key == ANNOTATION_KEY_METRICS_PORT:
        parser, expected = parse_port, 'port'
    elif key in (ANNOTATION_KEY_INGRESS_CLASS, ANNOTATION_KEY_ENV_FROM_CM, ANNOTATION_KEY_ENV_FROM_SECRET):
        return value
    elif key == ANNOTATION_KEY_ENV:
        parser, expected = (lambda v: parse_map(v, '=')), 'list of NAME=value'
    else:
        raise AssertionError(f"unknown annotation key {key!r}")

    try:
        return parser(value)
    except ValueError as e:
        raise DirectiveError(key, value, expected) from e


def get_ingress_config(ingress, defaults: Optional[DirectiveDefaults] = None) -> IngressConfig:
    """
    Return the IngressConfig for an Ingress (a V1Ingress, or None).
    Missing annotations fall back to defaults; a DirectiveError is raised
    if a recognised annotation holds an invalid value.
    """
    if defaults is None:
        defaults = DirectiveDefaults()

    annotations = {}
    if ingress is not None and ingress.metadata is not None:
        annotations = ingress.metadata.annotations or {}

    values = {}
    for key in ANNOTATION_KEYS:
        if key not in annotations:
            continue
        values[key] = _parse(key, annotations[key])

    return IngressConfig(
        difficulty=values.get(ANNOTATION_KEY_DIFFICULTY, defaults.difficulty),
        serve_robots_txt=values.get(ANNOTATION_KEY_SERVE_ROBOTS_TXT, defaults.serve_robots_txt),
        og_passthrough=values.get(ANNOTATION_KEY_OG_PASSTHROUGH, defaults.og_passthrough),
        metrics_port=values.get(ANNOTATION_KEY_METRICS_PORT, defaults.metrics_port),
        ingress_class=values.get(ANNOTATION_KEY_INGRESS_CLASS),
        env_from_configmap=values.get(ANNOTATION_KEY_ENV_FROM_CM),
        env_from_secret=values.get(ANNOTATION_KEY_ENV_FROM_SECRET),
        environment=values.get(ANNOTATION_KEY_ENV, {}),
    )
