"""Reflex runtime configuration for the ATM app."""

from __future__ import annotations

import os

import reflex as rx


# Disable SSR/prerendered HTML to avoid hydration mismatches behind the proxy.
os.environ.setdefault("REFLEX_SSR", "0")

config = rx.Config(
    app_name="atm",
    frontend_port=3000,
    backend_port=8000,
    show_built_with_reflex=False,
    disable_plugins=["reflex.plugins.sitemap.SitemapPlugin"],
)
