"""Attribute providers for fetch parameters and bucketing."""

from remote_config.attributes.provider import (
    AttributeProvider,
    StaticAttributeProvider,
)


__all__ = [
    "AttributeProvider",
    "StaticAttributeProvider",
]
