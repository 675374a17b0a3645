"""Tests for running the service under leader election."""

import threading

import pytest

from ingress_anubis import __main__ as entrypoint
from ingress_anubis.config import Config
from ingress_anubis.service import IngressAnubisService


class FakeElection:
    """Starts leading at once, then renews until released, like the client's renew loop"""

    released = threading.Event()

    def __init__(self, election_config):
        self.config = election_config

    def run(self):
        threading.Thread(target=self.config.onstarted_leading, daemon=True).start()
        while not self.released.is_set():
            self.released.wait(0.01)


class BrokenElection(FakeElection):

    def run(self):
        raise RuntimeError("configmaps is forbidden")


@pytest.fixture
def service(tmp_path, monkeypatch):
    monkeypatch.setattr(entrypoint, 'ConfigMapLock', lambda name, namespace, identity: object())
    return IngressAnubisService(None, shared_dir=str(tmp_path), poll_interval=0.01)


@pytest.fixture(autouse=True)
def release_elections():
    FakeElection.released.clear()
    yield
    FakeElection.released.set()


def test_shutdown_while_leading(service, monkeypatch) -> None:
    """Test a stop request returns even though the election keeps renewing."""
    monkeypatch.setattr(entrypoint.leaderelection, 'LeaderElection', FakeElection)
    runner = threading.Thread(target=entrypoint.run_with_leader_election, args=(service, Config()))
    runner.start()

    service.stop_event.wait(0.1)
    service.stop_event.set()
    runner.join(timeout=5)

    assert not runner.is_alive()
    assert not FakeElection.released.is_set()


def test_election_failure_raises(service, monkeypatch) -> None:
    monkeypatch.setattr(entrypoint.leaderelection, 'LeaderElection', BrokenElection)

    with pytest.raises(RuntimeError, match='forbidden'):
        entrypoint.run_with_leader_election(service, Config())
    assert service.stop_event.is_set()
