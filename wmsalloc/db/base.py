# wmsalloc/db/base.py
from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import Iterator, List

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("wmsalloc.models")


class Base(DeclarativeBase):
    """Single ORM base for the service."""

    pass


_INITIALIZED: bool = False


def _iter_model_modules(pkg_name: str = "wmsalloc.models") -> Iterator[str]:
    """Walk wmsalloc.models.* (modules starting with an underscore are skipped)."""
    pkg = importlib.import_module(pkg_name)
    for _, name, _ in pkgutil.walk_packages(list(getattr(pkg, "__path__", [])), prefix=pkg_name + "."):
        if name.rsplit(".", 1)[-1].startswith("_"):
            continue
        yield name


def init_models(*, force: bool = False) -> None:
    """
    Import every model module so Base.metadata is complete, then configure
    mappers once. Safe to call repeatedly.
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded: List[str] = []
    for mod in _iter_model_modules():
        importlib.import_module(mod)
        loaded.append(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(loaded))
