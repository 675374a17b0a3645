"""Entrypoint: python -m ingress_anubis"""

import os
import sys
import uuid
import signal
import logging
import threading

from kubernetes import client, config as kube_config
from kubernetes.leaderelection import electionconfig, leaderelection
from kubernetes.leaderelection.resourcelock.configmaplock import ConfigMapLock

from .config import load_config
from .errors import ConfigError
from .reconciler import Reconciler
from .service import IngressAnubisService


logger = logging.getLogger('ingress_anubis')

LEADER_ELECTION_LOCK = 'ingress-anubis-leader'


def setup_logging():
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        stream=sys.stdout
    )


def load_kube_config():
    # Load Kubernetes config from service account, fall back to kubeconfig for local runs
    try:
        kube_config.load_incluster_config()
    except kube_config.ConfigException:
        kube_config.load_kube_config()


def run_with_leader_election(service, cfg):
    """
    Run the service while holding the leader lock.

    The election loops never return on their own, so they run in a daemon
    thread and this call returns once the stop event is set and the
    service has finished its current request.
    """
    candidate_id = os.getenv('HOSTNAME') or str(uuid.uuid4())

    def on_stopped_leading():
        logger.info(f"{candidate_id} lost leadership, stopping")
        service.stop_event.set()

    started = threading.Event()
    finished = threading.Event()

    def lead():
        started.set()
        try:
            service.run()
        finally:
            finished.set()

    election = electionconfig.Config(
        ConfigMapLock(LEADER_ELECTION_LOCK, cfg.namespace, candidate_id),
        lease_duration=17,
        renew_deadline=15,
        retry_period=5,
        onstarted_leading=lead,
        onstopped_leading=on_stopped_leading
    )

    failures = []

    def elect():
        try:
            leaderelection.LeaderElection(election).run()
        except Exception as e:
            failures.append(e)
        finally:
            service.stop_event.set()

    threading.Thread(target=elect, name='leader-election', daemon=True).start()

    service.stop_event.wait()
    if started.is_set() and not finished.wait(cfg.request_timeout):
        logger.warning("[shutdown] Service did not stop in time, exiting anyway")
    logger.info(f"[shutdown] {candidate_id} leaving leader election")
    if failures:
        raise failures[0]


def main():
    setup_logging()

    try:
        cfg = load_config()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    load_kube_config()

    stop_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info(f"[shutdown] Received signal {signum}, initiating graceful shutdown...")
        stop_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    api_client = client.ApiClient()
    reconciler = Reconciler(
        cfg,
        apps_v1=client.AppsV1Api(api_client),
        core_v1=client.CoreV1Api(api_client),
        networking_v1=client.NetworkingV1Api(api_client),
        api_client=api_client,
        stop_event=stop_event
    )
    service = IngressAnubisService(reconciler, shared_dir=cfg.shared_dir, stop_event=stop_event)

    logger.info(
        f"Ingress Anubis operator initialized: namespace={cfg.namespace}, "
        f"class={cfg.ingress_class_name}, wrapped class={cfg.wrapped_ingress_class_name}, "
        f"image={cfg.anubis_image_ref}, leader election={cfg.leader_election}"
    )

    try:
        if cfg.leader_election:
            run_with_leader_election(service, cfg)
        else:
            service.run()
    except Exception as e:
        logger.critical(f"FATAL ERROR: {e}", exc_info=True)
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
