import logging
from logging.config import fileConfig
import os
import importlib
import pkgutil
from pathlib import Path

from flask import current_app
from alembic import context

# Alembic Config object (reads alembic.ini)
config = context.config

# Logging: alembic.ini next to this file, else basic console logging
def _init_logging():
    ini = config.config_file_name
    if ini and Path(ini).exists():
        fileConfig(ini)
        return
    logging.basicConfig(level=logging.INFO)

_init_logging()
logger = logging.getLogger("alembic.env")


def get_engine():
    # Flask-SQLAlchemy 3.x exposes the default bind as db.engine
    return current_app.extensions["migrate"].db.engine


def get_engine_url():
    return get_engine().url.render_as_string(hide_password=False).replace("%", "%%")


# Alembic needs a URL in offline mode
config.set_main_option("sqlalchemy.url", get_engine_url())

target_db = current_app.extensions["migrate"].db


def _autoload_models():
    """
    Import every module in feedbackkit.models so autogenerate sees every
    table/index/constraint (outbox and email log included).
    """
    import feedbackkit.models as models_pkg
    for m in pkgutil.iter_modules(models_pkg.__path__):
        importlib.import_module(f"feedbackkit.models.{m.name}")
    logger.info("Auto-loaded models from feedbackkit.models/*")


# Autogenerate must not propose index DROPs unless allowlisted
_DROP_INDEX_ALLOWLIST = {
    name.strip()
    for name in os.getenv("ALEMBIC_DROP_INDEX_ALLOWLIST", "").split(",")
    if name.strip()
}

def _include_object(object, name, type_, reflected, compare_to):
    if type_ == "index":
        if name in _DROP_INDEX_ALLOWLIST:
            return True
        if reflected and compare_to is None:
            # Index exists in DB but not in metadata -> skip DROP
            return False
    return True


def run_migrations_offline():
    """Emit SQL to stdout (`flask db upgrade --sql`)."""
    _autoload_models()
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_db.metadata,
        literal_binds=True,
        compare_type=True,
        include_object=_include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    # Don't write empty revision files
    def process_revision_directives(context_, revision, directives):
        if getattr(config.cmd_opts, "autogenerate", False):
            script = directives[0]
            if script.upgrade_ops.is_empty():
                directives[:] = []
                logger.info("No changes in schema detected.")

    _autoload_models()
    conf_args = {
        **current_app.extensions["migrate"].configure_args,
        "process_revision_directives": process_revision_directives,
        "compare_type": True,
        "include_object": _include_object,
        "target_metadata": target_db.metadata,
    }

    with get_engine().connect() as connection:
        # SQLite (local dev) can only ALTER through table copies
        if connection.dialect.name == "sqlite":
            conf_args["render_as_batch"] = True
        context.configure(connection=connection, **conf_args)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
