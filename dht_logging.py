"""Logging helpers: every record emitted by a peer starts with the simulated time."""

import logging

import config


class SimTimeAdapter(logging.LoggerAdapter):
    """Prefix messages with the current time of a SimPy environment."""

    def __init__(self, logger, env):
        super().__init__(logger, {})
        self.env = env

    def process(self, msg, kwargs):
        return f"{self.env.now:.1f}: {msg}", kwargs


def get_logger(name, env):
    return SimTimeAdapter(logging.getLogger(name), env)


def setup_logging(level=config.LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=config.LOG_FORMAT,
    )
