"""Filter engine wiring.

Builds the registry once per app and hands it, explicitly, to every
component that needs it. The result lives in app.extensions["taskboard"].
"""

from dataclasses import dataclass

from flask import current_app

from taskboard.services.column_resolver import ColumnResolver, user_exists
from taskboard.services.column_types import ColumnTypeRegistry
from taskboard.services.field_validator import FieldValueValidator
from taskboard.services.filter_builder import FilterBuilder
from taskboard.services.filter_strategies import FilterStrategies
from taskboard.services.query_translator import QueryTranslator

EXTENSION_KEY = "taskboard"


@dataclass(frozen=True)
class FilterEngine:
    registry: ColumnTypeRegistry
    validator: FieldValueValidator
    strategies: FilterStrategies
    resolver: ColumnResolver
    builder: FilterBuilder
    translator: QueryTranslator


def build_filter_engine(config):
    """Construct every component from a config mapping."""
    registry = ColumnTypeRegistry()
    strategies = FilterStrategies(registry, user_exists=user_exists)
    resolver = ColumnResolver(registry)
    return FilterEngine(
        registry=registry,
        validator=FieldValueValidator(registry, user_exists=user_exists),
        strategies=strategies,
        resolver=resolver,
        builder=FilterBuilder(registry, strategies, resolver),
        translator=QueryTranslator(
            registry,
            strategies,
            resolver,
            missing_values=config.get("FILTER_SORT_MISSING_VALUES", "last"),
            default_per_page=config.get("FILTER_DEFAULT_PER_PAGE", 15),
            max_per_page=config.get("FILTER_MAX_PER_PAGE", 100),
        ),
    )


def init_filter_engine(app):
    app.extensions[EXTENSION_KEY] = build_filter_engine(app.config)


def get_engine():
    return current_app.extensions[EXTENSION_KEY]
