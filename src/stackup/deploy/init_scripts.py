"""Generated first-boot scripts for the database unit.

The postgres image runs every ``*.sh`` in ``/docker-entrypoint-initdb.d``
when it initialises an empty data directory. Credentials can change between
runs, so the scripts are regenerated from the current settings before the
database unit starts; stale copies from an earlier configuration are
removed first.

Each script feeds SQL to ``psql`` on stdin with configuration values bound
as psql variables (``-v role=...``). Values are shell-quoted with
:func:`shlex.quote` and the heredocs are quoted, so neither the shell nor
the SQL parser ever sees a raw credential. The SQL itself is shared with
:mod:`stackup.deploy.provisioning`.

Extension installs are tolerant: an extension the image does not ship is
reported on stderr and the loop moves on, so the entrypoint still reaches
the later scripts.
"""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path

from stackup.core.logging import get_logger
from stackup.core.settings import StackSettings
from stackup.deploy.provisioning import CREATE_EXTENSION, GRANT_MONITORING, GRANT_PRIVILEGES

logger = get_logger(__name__)

SCRIPT_MODE = 0o755

CREATE_ROLE_IF_MISSING = """\
SELECT format('CREATE ROLE %I WITH LOGIN PASSWORD %L', :'role', :'password')
WHERE NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = :'role')\\gexec
"""

CREATE_DATABASE_IF_MISSING = """\
SELECT format('CREATE DATABASE %I OWNER %I', :'database', :'role')
WHERE NOT EXISTS (SELECT 1 FROM pg_database WHERE datname = :'database')\\gexec
"""

_HEADER = """\
#!/bin/bash
# Generated by stackup. Regenerated on every deployment; do not edit.
set -e
"""


def _psql(
    database: str,
    variables: dict[str, str],
    sql: str,
    *,
    shell_variables: dict[str, str] | None = None,
    on_error: str | None = None,
) -> str:
    """Render one ``psql`` call reading ``sql`` from a quoted heredoc.

    ``variables`` hold literal values and are shell-quoted.
    ``shell_variables`` map a psql variable to a shell variable expanded at
    run time. ``on_error`` is a shell command run when psql fails, in place
    of aborting the script.
    """
    args = ["psql", "-v", "ON_ERROR_STOP=1", "-U", '"$POSTGRES_USER"', "-d", shlex.quote(database)]
    for name, value in variables.items():
        args.extend(["-v", shlex.quote(f"{name}={value}")])
    for name, shell_name in (shell_variables or {}).items():
        args.extend(["-v", f'{name}="${shell_name}"'])
    command = " ".join(args) + " <<'EOSQL'"
    if on_error:
        command += f" || {on_error}"
    return command + "\n" + sql.rstrip("\n") + "\nEOSQL\n"


def render_user_db_script(settings: StackSettings) -> str:
    variables = {
        "role": settings.postgres_db_username,
        "password": settings.postgres_db_password.get_secret_value(),
        "database": settings.postgres_db,
    }
    return (
        _HEADER
        + '\necho "Creating primary role and database..."\n'
        + _psql("postgres", variables, CREATE_ROLE_IF_MISSING + CREATE_DATABASE_IF_MISSING)
        + _psql(settings.postgres_db, {"role": variables["role"], "database": variables["database"]}, GRANT_PRIVILEGES)
        + 'echo "Primary role and database ready"\n'
    )


def render_extensions_script(settings: StackSettings) -> str:
    extensions = " ".join(shlex.quote(ext) for ext in settings.extensions)
    psql = _psql(
        settings.postgres_db,
        {},
        CREATE_EXTENSION,
        shell_variables={"extension": "ext"},
        on_error='echo "extension $ext could not be installed" >&2',
    )
    return (
        _HEADER
        + '\necho "Installing extensions..."\n'
        + f"for ext in {extensions}; do\n"
        + psql
        + "done\n"
        + 'echo "Extension installation finished"\n'
    )


def render_metrics_user_script(settings: StackSettings) -> str:
    variables = {
        "role": settings.postgres_metrics_username,
        "password": settings.postgres_metrics_password.get_secret_value(),
        "database": settings.postgres_db,
    }
    return (
        _HEADER
        + '\necho "Creating monitoring role..."\n'
        + _psql("postgres", variables, CREATE_ROLE_IF_MISSING + GRANT_MONITORING)
        + 'echo "Monitoring role ready"\n'
    )


SCRIPTS = {
    "01-create-user-db.sh": render_user_db_script,
    "02-install-extensions.sh": render_extensions_script,
    "03-create-metrics-user.sh": render_metrics_user_script,
}


def scripts_dir(settings: StackSettings) -> Path:
    path = settings.init_scripts_dir
    return path if path.is_absolute() else settings.project_dir / path


def generate_init_scripts(settings: StackSettings) -> list[Path]:
    """Replace the init-scripts directory with freshly rendered scripts.

    Returns the written paths in execution order.
    """
    target = scripts_dir(settings)
    if target.exists():
        shutil.rmtree(target)
    target.mkdir(parents=True)

    written = []
    for name, render in SCRIPTS.items():
        path = target / name
        path.write_text(render(settings), encoding="utf-8", newline="\n")
        path.chmod(SCRIPT_MODE)
        written.append(path)

    logger.info("init_scripts.generated", directory=str(target), scripts=[p.name for p in written])
    return written
