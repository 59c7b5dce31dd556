import logging


logger = logging.getLogger(__name__)


def backoff_hndlr(details):
    logger.info(
        "Backing off {wait:0.1f} seconds after {tries} tries "
        "calling {target.__name__}".format(**details)
    )


def giveup_hndlr(details):
    logger.warning(
        "Giving up on {target.__name__} after {tries} tries "
        "({elapsed:0.1f} seconds)".format(**details)
    )
