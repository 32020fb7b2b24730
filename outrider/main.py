"""Outrider - Entry point."""

import logging
import signal
import sys
from dotenv import load_dotenv
from kubernetes import client

from .clients import DownstreamClientCache
from .config import Config
from .copier import CopyEngine
from .credentials import CredentialResolver
from .errors import ConfigError
from .inventory import Inventory
from .metrics import MetricsServer
from .operator import Operator
from .reconcilers import ClusterReconciler, SecretReconciler
from .utils import get_k8s_api_client

logger = logging.getLogger("outrider")


def build_operator(api_client, config):
    """Wire the reconciliation core around a manager-cluster API client."""
    v1_api = client.CoreV1Api(api_client)
    custom_api = client.CustomObjectsApi(api_client)

    client_cache = DownstreamClientCache(CredentialResolver(v1_api, config))
    copy_engine = CopyEngine(client_cache, config)
    inventory = Inventory(v1_api, custom_api)

    return Operator(
        v1_api,
        custom_api,
        config,
        SecretReconciler(inventory, copy_engine, client_cache),
        ClusterReconciler(inventory, copy_engine, client_cache),
        client_cache,
    )


def main():
    """Main entry point for Outrider."""
    # Load environment variables from .env file
    load_dotenv()

    try:
        config = Config.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(str(e))
        sys.exit(1)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Starting Outrider operator")
    logger.info(f"Log level set to: {config.log_level}")
    logger.info(
        f"Configuration loaded: default_target_namespace={config.default_target_namespace}, "
        f"kubeconfig_namespace={config.kubeconfig_namespace}, "
        f"testing_mode={config.testing_mode}")

    # Start up the server to expose the metrics.
    metrics_server = MetricsServer(port=config.metrics_port)
    metrics_server.start()
    logger.info(f"Prometheus metrics server started on port {config.metrics_port}.")

    try:
        api_client = get_k8s_api_client()
    except Exception as e:
        logger.error(f"Failed to connect to the manager cluster: {e}")
        sys.exit(1)

    operator = build_operator(api_client, config)

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        signal_name = 'SIGTERM' if signum == signal.SIGTERM else 'SIGINT'
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        operator.shutdown()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("Signal handlers registered. Starting operator...")

    try:
        operator.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        operator.shutdown()
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)

    logger.info("Operator shutdown complete.")
    sys.exit(0)


if __name__ == '__main__':
    main()
