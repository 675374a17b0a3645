"""
Request loop
Picks up shell-operator binding contexts from a shared directory and reconciles the Ingresses they name
"""

import os
import json
import logging
import threading
from typing import Any, Dict, List, Tuple

from .errors import TerminalError
from .reconciler import Reconciler


logger = logging.getLogger(__name__)


def extract_objects(binding_context: Any) -> List[Dict[str, Any]]:
    """
    Return every object referenced by a binding context.

    Shell-operator sends a list of bindings; a single event carries
    'object' (or 'watchEvent.object'), a Synchronization carries
    'objects' with one {'object': ...} wrapper per resource.
    """
    if isinstance(binding_context, dict):
        bindings = [binding_context.get('binding', binding_context)]
    else:
        bindings = binding_context or []

    objects = []
    for binding in bindings:
        if not isinstance(binding, dict):
            continue
        if 'object' in binding:
            objects.append(binding['object'])
        elif 'watchEvent' in binding:
            objects.append(binding['watchEvent'].get('object', {}))
        elif 'objects' in binding:
            for wrapper in binding['objects'] or []:
                objects.append(wrapper.get('object', {}))
    return [obj for obj in objects if obj]


class IngressAnubisService:
    """Main service for processing Ingress events"""

    def __init__(self, reconciler: Reconciler, shared_dir: str = '/shared',
                 stop_event: threading.Event = None, poll_interval: float = 0.1):
        self.reconciler = reconciler
        self.shared_dir = shared_dir
        self.stop_event = stop_event or threading.Event()
        self.poll_interval = poll_interval

    def process_request(self, binding_context: Any) -> str:
        """Reconcile each Ingress in a binding context, one response line per Ingress"""
        lines = []
        objects = extract_objects(binding_context)
        if not objects:
            logger.warning("No objects in binding context")

        for obj in objects:
            kind = obj.get('kind', '')
            metadata = obj.get('metadata', {})
            namespace = metadata.get('namespace')
            name = metadata.get('name')

            if kind != 'Ingress':
                logger.warning(f"Unknown kind: {kind}")
                continue
            if not namespace or not name:
                logger.warning("Ingress without namespace or name in binding context")
                continue

            status, message = self._reconcile_one(namespace, name)
            line = f"{status} {namespace}/{name}"
            if message:
                line += f": {message}"
            lines.append(line)

        return '\n'.join(lines) if lines else 'OK'

    def _reconcile_one(self, namespace: str, name: str) -> Tuple[str, str]:
        try:
            result = self.reconciler.reconcile(namespace, name)
        except TerminalError as e:
            logger.error(f"Terminal error reconciling Ingress {namespace}/{name}: {e}")
            return 'TERMINAL', str(e)
        except Exception as e:
            logger.error(f"Failed to reconcile Ingress {namespace}/{name}: {e}", exc_info=True)
            return 'ERROR', str(e)

        if result.requeue:
            return 'REQUEUE', ''
        return 'OK', ''

    def handle_request_file(self, request_file: str):
        request_path = os.path.join(self.shared_dir, request_file)
        request_id = request_file[len('request-'):-len('.json')]
        response_path = os.path.join(self.shared_dir, f'response-{request_id}.txt')

        try:
            with open(request_path, 'r') as f:
                binding_context = json.load(f)

            logger.info(f"[handler] Processing request from {request_file}")
            response = self.process_request(binding_context)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading {request_file}: {e}")
            response = f"ERROR: {e}"

        with open(response_path, 'w') as f:
            f.write(response)
        logger.info(f"[handler] Wrote response to {os.path.basename(response_path)}")

        try:
            os.remove(request_path)
        except FileNotFoundError:
            pass

    def run_once(self):
        """Handle every pending request file once"""
        request_files = sorted(
            f for f in os.listdir(self.shared_dir)
            if f.startswith('request-') and f.endswith('.json')
        )
        for request_file in request_files:
            if self.stop_event.is_set():
                logger.info("[shutdown] Stopping request processing...")
                break
            self.handle_request_file(request_file)

    def run(self):
        """Main service loop"""
        logger.info(f"Ingress Anubis operator watching {self.shared_dir}")

        while not self.stop_event.is_set():
            if not os.path.isdir(self.shared_dir):
                logger.warning(f"Shared directory {self.shared_dir} does not exist, waiting...")
                self.stop_event.wait(1)
                continue

            try:
                self.run_once()
            except OSError as e:
                logger.error(f"Error in watch loop: {e}", exc_info=True)
                self.stop_event.wait(1)
                continue

            self.stop_event.wait(self.poll_interval)

        logger.info("[shutdown] Service stopped cleanly")
