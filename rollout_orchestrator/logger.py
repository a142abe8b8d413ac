import logging
import sys

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def setup_logging(level="INFO", stream=None):
    # stdout carries the verification report, so logs go to stderr
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                        stream=stream or sys.stderr)


def get_logger(name="rollout_orchestrator"):
    return logging.getLogger(f"rollout_orchestrator.{name}" if name != "rollout_orchestrator" else name)
