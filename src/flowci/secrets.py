# secrets.py
from __future__ import annotations

import os
import re
from typing import Dict, Iterable, Mapping, Optional

from .errors import MissingCredentialError
from .model import Job, JobInstance

DEFAULT_SECRET_PREFIX = "FLOWCI_SECRET_"
MASK = "***"

SECRET_REF_RE = re.compile(r"\$\{\{\s*secrets\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class SecretStore:
    """
    Read-only view of the credentials bound to this process.

    Values never leave this object except through SecretScope.resolve(),
    and repr() never shows them.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    @classmethod
    def from_environ(
        cls,
        prefix: str = DEFAULT_SECRET_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SecretStore":
        """FLOWCI_SECRET_CRATES_TOKEN=... becomes secret CRATES_TOKEN."""
        environ = os.environ if environ is None else environ
        return cls({k[len(prefix):]: v for k, v in environ.items() if k.startswith(prefix) and len(k) > len(prefix)})

    def names(self) -> list[str]:
        return sorted(self._values)

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SecretStore(names={self.names()})"

    def redactor(self) -> "Redactor":
        return Redactor(self._values.values())


class SecretScope:
    """Hands each job instance exactly the secrets it declared, nothing else."""

    def __init__(self, store: SecretStore):
        self.store = store

    def resolve(self, instance: JobInstance) -> Dict[str, str]:
        """
        Returns {env var name: secret value} for the instance's declared secrets.

        Raises MissingCredentialError on the first declared secret the store
        does not hold. Call only right before the instance executes.
        """
        out: Dict[str, str] = {}
        for var, secret_name in instance.job.secrets:
            value = self.store.get(secret_name)
            if value is None:
                raise MissingCredentialError(job=instance.name, secret=secret_name)
            out[var] = value
        return out

    def values_by_name(self, instance: JobInstance) -> Dict[str, str]:
        """Declared secrets keyed by secret name, for ${{ secrets.X }} substitution."""
        resolved = self.resolve(instance)
        return {secret_name: resolved[var] for var, secret_name in instance.job.secrets}


class Redactor:
    """Masks secret values in any text that may end up in a log or report."""

    def __init__(self, values: Iterable[str]):
        # longest first so a secret containing another secret is masked whole
        self._values = sorted({v for v in values if v}, key=len, reverse=True)

    def redact(self, text: str | None) -> str:
        if not text:
            return text or ""
        for v in self._values:
            text = text.replace(v, MASK)
        return text


def base_environment(
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = DEFAULT_SECRET_PREFIX,
) -> Dict[str, str]:
    """
    The process environment every step starts from, minus the secret store's
    own variables.
    """
    environ = os.environ if environ is None else environ
    return {k: v for k, v in environ.items() if not k.startswith(prefix)}


def referenced_secrets(job: Job) -> set[str]:
    names: set[str] = set()
    for step in job.steps:
        for text in (step.run, *(v for _, v in step.env)):
            if text:
                names.update(SECRET_REF_RE.findall(text))
    for _, v in job.env:
        names.update(SECRET_REF_RE.findall(v))
    return names


def substitute_secrets(text: str | None, by_name: Mapping[str, str]) -> str | None:
    if text is None:
        return None
    return SECRET_REF_RE.sub(lambda m: by_name.get(m.group(1), m.group(0)), text)
