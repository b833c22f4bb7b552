"""Menu catalog service.

Exposes a menu catalog (sections, subsections, products) to automated agents
as callable tools. The ordering engine in ``menu_catalog.logic.ordering``
keeps product positions dense within each container; route handlers live in
``menu_catalog.routes``.
"""

from __future__ import annotations

from menu_catalog.main import create_app

__all__ = ["create_app"]
