"""Build metadata reported by the health endpoint.

APP_VERSION and GIT_COMMIT are injected through the environment by the
deployment. Without them the installed distribution version is used and
the commit is reported as "dev".
"""

import os
from importlib import metadata

DISTRIBUTION_NAME = "rinascimento-relay"


def _installed_version() -> str:
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return "dev"


APP_VERSION: str = os.environ.get("APP_VERSION") or _installed_version()
GIT_COMMIT: str = os.environ.get("GIT_COMMIT") or "dev"
