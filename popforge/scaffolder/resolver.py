"""Template resolution and materialization.

Turns a :data:`TemplateSource` into a project directory:

1. Refuse a non-empty destination (unless overwriting) before touching disk.
2. Map built-in names onto their local or remote source.
3. Shallow-clone remote repositories into a temporary directory.
4. Copy the tree without its ``.git`` directory.
5. Substitute ``{{name}}`` placeholders and warn about unknown ones.
"""

from __future__ import annotations

import re
import shutil
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from popforge.models import TargetKind
from popforge.runner import ProcessNonZeroExit, ProcessRunner, RunError
from popforge.scaffolder.sources import (
    BUILTIN_TEMPLATES,
    BuiltIn,
    LocalPath,
    RemoteRepository,
    TemplateSource,
    to_ssh_url,
)
from popforge.scaffolder.substitution import substitute_tree
from popforge.toolchain.models import parse_version
from popforge.utils import console, print_warning, sanitize_name, snake_case

_COMMIT_PATTERN = re.compile(r"^[0-9a-f]{7,40}$")
_RELEASE_TAG_PATTERN = re.compile(r"^v\d+\.\d+\.\d+$")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ResolveError(Exception):
    """Base class for template resolution failures."""


class DestinationNotEmpty(ResolveError):
    def __init__(self, destination: Path):
        self.destination = destination
        super().__init__(
            f"Destination {destination} is not empty; pass --overwrite to replace its contents"
        )


class FetchFailed(ResolveError):
    def __init__(self, url: str, cause: str):
        self.url = url
        self.cause = cause
        super().__init__(f"Failed to fetch template from {url}: {cause}")


class TemplateNotFound(ResolveError):
    pass


class UnknownTemplate(ResolveError):
    def __init__(self, name: str):
        self.name = name
        known = ", ".join(sorted(BUILTIN_TEMPLATES))
        super().__init__(f"Unknown built-in template '{name}' (available: {known})")


class TemplateKindMismatch(ResolveError):
    def __init__(self, name: str, template_kind: TargetKind, requested: TargetKind):
        self.name = name
        super().__init__(
            f"Built-in template '{name}' is a {template_kind.value} template, "
            f"not a {requested.value} template"
        )


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass
class MaterializedTemplate:
    """The project directory produced from a template."""

    destination: Path
    substituted: set[str] = field(default_factory=set)
    unresolved: set[str] = field(default_factory=set)
    template: str = ""
    reference: str | None = None


def default_variables(destination: Path) -> dict[str, str]:
    """Variables every template can rely on, derived from the destination name."""
    name = sanitize_name(destination.name) or "project"
    crate_name = snake_case(name)
    return {
        "name": name,
        "crate_name": crate_name,
        "contract_type": "".join(part.capitalize() for part in crate_name.split("_") if part),
        "authors": "author",
    }


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TemplateResolver:
    """Materializes template sources into project directories."""

    def __init__(
        self,
        runner: ProcessRunner,
        fetch_timeout: float = 300.0,
        ssh_fallback: bool = True,
        pin_latest_release: bool = False,
    ) -> None:
        self.runner = runner
        self.fetch_timeout = fetch_timeout
        self.ssh_fallback = ssh_fallback
        self.pin_latest_release = pin_latest_release

    async def resolve(
        self,
        source: TemplateSource,
        destination: str | Path,
        variables: Mapping[str, str] | None = None,
        overwrite: bool = False,
        kind: TargetKind | None = None,
    ) -> MaterializedTemplate:
        """Materialize *source* into *destination*.

        Args:
            source: Local path, remote repository or built-in name.
            destination: Project directory to create or fill.
            variables: Placeholder values; override the defaults.
            overwrite: Clear a non-empty destination instead of failing.
            kind: Expected target kind, checked against built-in templates.

        Raises:
            DestinationNotEmpty: *destination* has content and *overwrite* is off.
            FetchFailed: A remote repository could not be cloned.
            TemplateNotFound: A local template directory does not exist.
            UnknownTemplate: The built-in name is not in the catalogue.
            TemplateKindMismatch: The built-in template targets another kind.
        """
        dest = Path(destination)
        if not overwrite and _has_content(dest):
            raise DestinationNotEmpty(dest)

        label = _label(source)
        if isinstance(source, BuiltIn):
            entry = BUILTIN_TEMPLATES.get(source.name)
            if entry is None:
                raise UnknownTemplate(source.name)
            if kind is not None and entry.kind is not kind:
                raise TemplateKindMismatch(source.name, entry.kind, kind)
            source = entry.source()

        merged = {**default_variables(dest), **(variables or {})}

        if isinstance(source, RemoteRepository):
            with tempfile.TemporaryDirectory(prefix="popforge-") as tmp:
                checkout = Path(tmp) / "checkout"
                reference = await self.fetch(source, checkout)
                result = self._materialize(checkout, dest, merged, overwrite)
            result.reference = reference
        else:
            result = self._materialize(Path(source.path), dest, merged, overwrite)

        result.template = label
        if result.unresolved:
            names = ", ".join(sorted(result.unresolved))
            print_warning(f"  Unresolved template placeholders left verbatim: {names}")
        return result

    # ------------------------------------------------------------------
    # Remote fetching
    # ------------------------------------------------------------------

    async def fetch(self, source: RemoteRepository, checkout: Path) -> str | None:
        """Shallow-clone *source* into *checkout*; return the fetched reference."""
        reference = source.reference
        if reference is None and self.pin_latest_release:
            reference = await self.latest_release_tag(source.url)

        console.print(
            f"  Fetching [bold]{escape(source.url)}[/bold]"
            + (f" at [green]{escape(reference)}[/green]" if reference else "")
        )
        try:
            await self._clone(source.url, reference, checkout)
        except ProcessNonZeroExit as exc:
            if not (self.ssh_fallback and source.url.startswith("https://")):
                raise FetchFailed(source.url, str(exc)) from exc
            shutil.rmtree(checkout, ignore_errors=True)
            ssh_url = to_ssh_url(source.url)
            console.print(f"  [dim]https clone failed, retrying over SSH ({escape(ssh_url)})[/dim]")
            try:
                await self._clone(ssh_url, reference, checkout)
            except RunError as ssh_exc:
                raise FetchFailed(source.url, str(exc)) from ssh_exc
        except RunError as exc:
            raise FetchFailed(source.url, str(exc)) from exc
        return reference

    async def _clone(self, url: str, reference: str | None, checkout: Path) -> None:
        if reference is not None and _COMMIT_PATTERN.match(reference):
            # Shallow clones cannot target a commit with --branch.
            checkout.mkdir(parents=True, exist_ok=True)
            await self.runner.run("git", ["init", "--quiet"], cwd=checkout, timeout=self.fetch_timeout)
            await self.runner.run(
                "git",
                ["fetch", "--quiet", "--depth", "1", url, reference],
                cwd=checkout,
                timeout=self.fetch_timeout,
            )
            await self.runner.run(
                "git", ["checkout", "--quiet", "FETCH_HEAD"], cwd=checkout, timeout=self.fetch_timeout
            )
            return

        args = ["clone", "--quiet", "--depth", "1"]
        if reference is not None:
            args += ["--branch", reference]
        args += [url, str(checkout)]
        await self.runner.run("git", args, timeout=self.fetch_timeout, env={"GIT_TERMINAL_PROMPT": "0"})

    async def latest_release_tag(self, url: str) -> str | None:
        """Return the highest ``vX.Y.Z`` tag published by *url*, if any."""
        try:
            output = await self.runner.run(
                "git", ["ls-remote", "--tags", "--refs", url], timeout=self.fetch_timeout
            )
        except RunError as exc:
            raise FetchFailed(url, str(exc)) from exc

        tags: list[str] = []
        for line in output.stdout.splitlines():
            _, _, ref = line.partition("\t")
            tag = ref.removeprefix("refs/tags/")
            if _RELEASE_TAG_PATTERN.match(tag):
                tags.append(tag)
        if not tags:
            return None
        return max(tags, key=lambda tag: parse_version(tag) or (0, 0, 0))

    # ------------------------------------------------------------------
    # Local materialization
    # ------------------------------------------------------------------

    def _materialize(
        self,
        template_dir: Path,
        dest: Path,
        variables: Mapping[str, str],
        overwrite: bool,
    ) -> MaterializedTemplate:
        if not template_dir.is_dir():
            raise TemplateNotFound(f"Template directory not found: {template_dir}")

        if overwrite and dest.exists():
            _clear_directory(dest)
        dest.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            template_dir,
            dest,
            dirs_exist_ok=True,
            symlinks=True,
            ignore=shutil.ignore_patterns(".git"),
        )

        report = substitute_tree(dest, variables)
        console.print(
            f"  Materialized template into [bold]{escape(str(dest))}[/bold] "
            f"({len(report.files_changed)} file(s) substituted)"
        )
        return MaterializedTemplate(
            destination=dest,
            substituted=report.substituted,
            unresolved=report.unresolved,
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _has_content(path: Path) -> bool:
    if not path.exists():
        return False
    if not path.is_dir():
        return True
    return any(path.iterdir())


def _clear_directory(path: Path) -> None:
    if not path.is_dir():
        path.unlink()
        return
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _label(source: TemplateSource) -> str:
    if isinstance(source, BuiltIn):
        return source.name
    if isinstance(source, RemoteRepository):
        return source.url
    return str(source.path)
