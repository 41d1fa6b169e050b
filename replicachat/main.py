"""
ReplicaChat: main entry point.

Usage:
    python -m replicachat.main start     # Start the gateway
    replicachat start                    # Via the console script
    replicachat chat --email you@x.io --replica <uuid>
"""

from __future__ import annotations

from replicachat.constants import DATA_DIR, PROJECT_VERSION
from replicachat.gateway.config import ReplicaChatConfig, load_config
from replicachat.utils.logging import get_logger, register_secret, setup_logging

logger = get_logger("main")


def bootstrap(json_logs: bool | None = None) -> ReplicaChatConfig:
    """
    Prepare the process for any command.

    - Loads .env (the organization secret usually lives there)
    - Loads configuration
    - Initializes logging and registers the secret for redaction
    """
    from dotenv import load_dotenv

    load_dotenv(".env.local")
    load_dotenv()

    config = load_config()
    setup_logging(
        level=config.logging.level,
        json_format=config.logging.format == "json" if json_logs is None else json_logs,
        redact_secrets=config.logging.redact_secrets,
    )
    register_secret(config.upstream.org_secret)

    logger.debug("replicachat_bootstrap", version=PROJECT_VERSION, data_dir=str(DATA_DIR))
    return config


def main() -> None:
    """Main entry point: runs the Click CLI."""
    from replicachat.cli.commands import cli

    cli()


if __name__ == "__main__":
    main()
