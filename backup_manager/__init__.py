import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler


logger = logging.getLogger(__name__)


def configure_logging(config_class, run_stamp):
    """Configure logging for one run: console plus a log file named after the run"""

    os.makedirs(config_class.LOG_DIR, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if getattr(config_class, 'DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    log_path = os.path.join(config_class.LOG_DIR, f'lbm-{run_stamp}.log')
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Replace handlers from an earlier run in this process
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(log_level)
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)}, file: {log_path})")
    return log_path


def main(config_name=None):
    """Run one backup and return the process exit code"""

    if config_name is None:
        config_name = os.environ.get('BACKUP_ENV', 'production')

    from backup_manager.config import config, load_settings, parse_compression_level, ConfigurationError
    from backup_manager.backup.executor import BackupExecutor

    config_class = config.get(config_name, config['default'])

    started_at = datetime.now()
    run_stamp = started_at.strftime('%Y-%m-%d-%H-%M')

    configure_logging(config_class, run_stamp)
    logger.info(f"Started backup {run_stamp}")

    if config_name not in config:
        logger.warning(f"Unknown BACKUP_ENV '{config_name}', using the default configuration")

    try:
        compression_level = parse_compression_level(config_class.COMPRESSION_LEVEL)
        settings = load_settings(config_class.SETTINGS_FILE)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
    else:
        logger.info("Found and bound config.")

        executor = BackupExecutor(
            settings,
            temp_dir=config_class.TEMP_DIR,
            compression_level=compression_level,
            stop_on_failure=config_class.STOP_ON_FAILURE,
            started_at=started_at
        )
        summary = executor.execute()

        if summary['failed_stages']:
            logger.warning(f"Backup finished with failed stages: {', '.join(summary['failed_stages'])}")

    # Stage failures are reported in the log only
    logger.info("Done! Closing application")
    return 0
