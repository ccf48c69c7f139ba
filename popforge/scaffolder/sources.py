"""Template sources and the built-in template catalogue.

A template is identified by one of three source variants: a local directory,
a remote git repository (optionally pinned to a branch, tag or commit), or a
named built-in template. Built-ins resolve to one of the other two.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from popforge.models import TargetKind

_BUILTIN_DIR = Path(__file__).parent / "builtin"


# ---------------------------------------------------------------------------
# Source variants
# ---------------------------------------------------------------------------


class LocalPath(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["local"] = "local"
    path: Path


class RemoteRepository(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["remote"] = "remote"
    url: str
    reference: str | None = Field(default=None, description="Branch, tag or commit")


class BuiltIn(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["builtin"] = "builtin"
    name: str


TemplateSource = Annotated[Union[LocalPath, RemoteRepository, BuiltIn], Field(discriminator="type")]


def to_ssh_url(url: str) -> str:
    """Convert an https repository URL to its SSH form.

    ``https://github.com/org/repo`` -> ``git@github.com:org/repo.git``
    """
    parsed = urlparse(url)
    host = parsed.hostname or "github.com"
    path = parsed.path.lstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return f"git@{host}:{path}.git"


# ---------------------------------------------------------------------------
# Built-in catalogue
# ---------------------------------------------------------------------------


class Provider(str, Enum):
    """Organisation publishing a built-in template."""

    POP = "pop"
    OPENZEPPELIN = "openzeppelin"
    PARITY = "parity"


class BuiltInTemplate(BaseModel):
    """Catalogue entry describing a named template."""

    model_config = ConfigDict(frozen=True)

    name: str
    title: str
    description: str
    kind: TargetKind
    provider: Provider
    repository: str | None = None
    bundled: str | None = Field(default=None, description="Directory under the package's builtin/")

    def source(self) -> LocalPath | RemoteRepository:
        """Return the concrete source this entry maps to."""
        if self.bundled is not None:
            return LocalPath(path=_BUILTIN_DIR / self.bundled)
        assert self.repository is not None
        return RemoteRepository(url=self.repository)


BUILTIN_TEMPLATES: dict[str, BuiltInTemplate] = {
    entry.name: entry
    for entry in (
        BuiltInTemplate(
            name="standard",
            title="Standard Contract",
            description="Minimal ink! contract storing a single flag.",
            kind=TargetKind.CONTRACT,
            provider=Provider.POP,
            bundled="contract-standard",
        ),
        BuiltInTemplate(
            name="base",
            title="Standard Template",
            description="A standard parachain.",
            kind=TargetKind.PARACHAIN,
            provider=Provider.POP,
            repository="https://github.com/r0gue-io/base-parachain",
        ),
        BuiltInTemplate(
            name="template",
            title="Generic Template",
            description="A generic template for Substrate Runtime.",
            kind=TargetKind.PARACHAIN,
            provider=Provider.OPENZEPPELIN,
            repository="https://github.com/OpenZeppelin/polkadot-runtime-template",
        ),
        BuiltInTemplate(
            name="cpt",
            title="Parity Contracts Node Template",
            description="Minimal Substrate node configured for smart contracts via pallet-contracts.",
            kind=TargetKind.PARACHAIN,
            provider=Provider.PARITY,
            repository="https://github.com/paritytech/substrate-contracts-node",
        ),
        BuiltInTemplate(
            name="fpt",
            title="Parity Frontier Parachain Template",
            description="Template node for a Frontier (EVM) based parachain.",
            kind=TargetKind.PARACHAIN,
            provider=Provider.PARITY,
            repository="https://github.com/paritytech/frontier-parachain-template",
        ),
    )
}

_DEFAULT_BY_PROVIDER: dict[Provider, str] = {
    Provider.POP: "base",
    Provider.OPENZEPPELIN: "template",
    Provider.PARITY: "cpt",
}

_DEFAULT_BY_KIND: dict[TargetKind, str] = {
    TargetKind.CONTRACT: "standard",
    TargetKind.PARACHAIN: "base",
}


def default_template(kind: TargetKind, provider: Provider | None = None) -> BuiltInTemplate:
    """Return the default built-in template for *kind* (and *provider*)."""
    if provider is not None and kind is TargetKind.PARACHAIN:
        return BUILTIN_TEMPLATES[_DEFAULT_BY_PROVIDER[provider]]
    return BUILTIN_TEMPLATES[_DEFAULT_BY_KIND[kind]]


def is_provider_correct(template: BuiltInTemplate, provider: Provider) -> bool:
    """Whether *template* is published by *provider*."""
    return template.provider is provider


def templates_for(kind: TargetKind) -> list[BuiltInTemplate]:
    return [entry for entry in BUILTIN_TEMPLATES.values() if entry.kind is kind]
