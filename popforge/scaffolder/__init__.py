"""popforge scaffolder -- materializes project templates.

Resolves a template source (local directory, remote git repository or
built-in name) into a project directory, substitutes ``{{name}}``
placeholders, and records the project's target kind.

Quick usage::

    from popforge.scaffolder import BuiltIn, TemplateResolver

    resolver = TemplateResolver(runner)
    materialized = await resolver.resolve(BuiltIn(name="standard"), "./flipper")
"""

from popforge.scaffolder.markers import (
    TargetKindMismatch,
    detect_target_kind,
    ensure_target_kind,
    read_target_marker,
    write_target_marker,
)
from popforge.scaffolder.resolver import (
    DestinationNotEmpty,
    FetchFailed,
    MaterializedTemplate,
    ResolveError,
    TemplateKindMismatch,
    TemplateNotFound,
    TemplateResolver,
    UnknownTemplate,
    default_variables,
)
from popforge.scaffolder.sources import (
    BUILTIN_TEMPLATES,
    BuiltIn,
    BuiltInTemplate,
    LocalPath,
    Provider,
    RemoteRepository,
    TemplateSource,
    default_template,
    is_provider_correct,
    templates_for,
)
from popforge.scaffolder.templates import TemplateRenderer

__all__ = [
    "BUILTIN_TEMPLATES",
    "BuiltIn",
    "BuiltInTemplate",
    "DestinationNotEmpty",
    "FetchFailed",
    "LocalPath",
    "MaterializedTemplate",
    "Provider",
    "RemoteRepository",
    "ResolveError",
    "TargetKindMismatch",
    "TemplateKindMismatch",
    "TemplateNotFound",
    "TemplateRenderer",
    "TemplateResolver",
    "TemplateSource",
    "UnknownTemplate",
    "default_template",
    "default_variables",
    "detect_target_kind",
    "ensure_target_kind",
    "is_provider_correct",
    "read_target_marker",
    "templates_for",
    "write_target_marker",
]
