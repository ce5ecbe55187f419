"""Allow ``python -m openrv_build``."""

from openrv_build.cli import app

app(prog_name="openrv-build")
