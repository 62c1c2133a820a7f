import os

from fixtures.env import *  # noqa


def pytest_configure(config):
    """Set up environment variables before any modules are imported."""
    os.environ.setdefault("DEBUG", "false")
    os.environ.setdefault("NOTARY_URL", "http://notary.test")
    os.environ.setdefault("MANAGE_WEBHOOKS", "false")


pytest_configure(None)

from fixtures.k8s import *  # noqa
from fixtures.http import *  # noqa
from fixtures.trust import *  # noqa
