import yaml
import os
from typing import Optional
from pydantic import BaseModel
from sqlmodel import Session, select
from .models import Connection, utcnow
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class Settings(BaseModel):
    data_directory: str
    database_url: str
    backup_directory: str
    max_parallel_jobs: int = 10
    timeout_seconds: Optional[float] = 3600
    default_postgresql_version: str = "16"
    docker_enabled: bool = True


def load_config(config_path: Optional[str] = None) -> dict:
    config_path = config_path or os.getenv("DBM_CONFIG", DEFAULT_CONFIG_PATH)
    if not os.path.exists(config_path):
        logger.info(f"No configuration file found at '{config_path}', using defaults.")
        return {}

    with open(config_path, "r") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing {config_path}: {e}")
            return {}


def get_settings(config: dict) -> Settings:
    global_conf = config.get("global") or {}
    backup_conf = config.get("backup") or {}

    data_directory = os.getenv("DBM_DATA_DIR") or os.path.join(os.path.expanduser("~"), ".config", "dbm")
    database_url = (
        os.getenv("DATABASE_URL")
        or global_conf.get("database_url")
        or f"sqlite:///{os.path.join(data_directory, 'db.sqlite')}"
    )
    backup_directory = (
        os.getenv("BACKUP_STORAGE_PATH")
        or backup_conf.get("directory")
        or os.path.join(data_directory, "backups")
    )

    settings = Settings(
        data_directory=data_directory,
        database_url=database_url,
        backup_directory=backup_directory,
        max_parallel_jobs=global_conf.get("max_parallel_jobs", 10),
        timeout_seconds=backup_conf.get("timeout_seconds", 3600),
        default_postgresql_version=str(backup_conf.get("default_postgresql_version", "16")),
        docker_enabled=backup_conf.get("docker_enabled", True),
    )
    logger.debug(f"Resolved settings: backup_directory={settings.backup_directory}, "
                 f"max_parallel_jobs={settings.max_parallel_jobs}, timeout_seconds={settings.timeout_seconds}")
    return settings


def sync_static_connections(session: Session, config_data: dict):
    """Create or update connections declared in the ``connections`` section of config.yaml."""
    conn_configs = config_data.get("connections") or []
    if not conn_configs:
        logger.info("No static connections declared, skipping sync.")
        return

    # Pre-validate for duplicate IDs
    config_ids = [conf.get('id') for conf in conn_configs if conf.get('id')]
    if len(config_ids) > len(set(config_ids)):
        seen = set()
        duplicates = {x for x in config_ids if x in seen or seen.add(x)}
        error_msg = f"Duplicate connection IDs found in config.yaml: {sorted(duplicates)}. Halting sync process."
        logger.error(error_msg)
        raise ValueError(error_msg)

    try:
        for raw in conn_configs:
            conf = dict(raw)
            config_id = conf.pop('id', None)
            if not config_id:
                logger.warning(
                    f"Skipping a connection (name: {conf.get('name', 'N/A')}) "
                    f"because it is missing the required 'id' field."
                )
                continue

            # Load credentials from environment variables or directly from config
            username_var = conf.pop("username_var", None)
            password_var = conf.pop("password_var", None)
            if "username" not in conf and username_var:
                conf["username"] = os.getenv(username_var)
            if "password" not in conf and password_var:
                conf["password"] = os.getenv(password_var)

            if not conf.get("username") or not conf.get("password"):
                logger.warning(f"Skipping connection with id '{config_id}' due to missing credentials.")
                continue

            if conf.get("postgresql_version") is not None:
                conf["postgresql_version"] = str(conf["postgresql_version"])

            existing = session.exec(select(Connection).where(Connection.config_id == config_id)).first()
            if existing:
                logger.info(f"Updating connection for config_id='{config_id}'.")
                for key, value in conf.items():
                    setattr(existing, key, value)
                existing.updated_at = utcnow()
                session.add(existing)
            else:
                logger.info(f"Creating connection for config_id='{config_id}'.")
                session.add(Connection(config_id=config_id, **conf))

        session.commit()
        logger.info("Successfully synced static connections from config.yaml.")
    except Exception as e:
        logger.error(f"An unexpected error occurred during connection sync: {e}")
        session.rollback()
        raise
