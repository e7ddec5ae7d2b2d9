"""Mock storefronts for local development."""

from .app import create_storefront_a, create_storefront_app, create_storefront_b, create_storefront_c

__all__ = ["create_storefront_app", "create_storefront_a", "create_storefront_b", "create_storefront_c"]
