"""Preconditions for a launch: a credential and a well-formed request."""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional, Union

from .errors import NotAuthenticated
from .interfaces import CredentialProvider
from .models import PreparedLaunch, QualityProfile, SessionRequest, TitleSelection, resolve_quality

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "CLOUDPLAY_TOKEN"


class StaticCredentialProvider:
    """Hands out a fixed token (CLI ``--token``, tests)."""

    def __init__(self, token: Optional[str]) -> None:
        self._token = token

    def get_credential(self) -> Optional[str]:
        return self._token


class EnvCredentialProvider:
    """Reads the token from the environment on every call."""

    def __init__(self, var: str = TOKEN_ENV_VAR, environ: Optional[Mapping[str, str]] = None) -> None:
        self.var = var
        self._environ = environ

    def get_credential(self) -> Optional[str]:
        env = os.environ if self._environ is None else self._environ
        return env.get(self.var)


class SessionRequestGate:
    """Builds a :class:`SessionRequest` once the caller is signed in.

    Holds no state between calls; the credential is fetched fresh for every
    launch so an expired login is noticed before anything remote happens.
    """

    def __init__(self, credentials: CredentialProvider, preferred_server: Optional[str] = None) -> None:
        self._credentials = credentials
        self._preferred_server = preferred_server

    def build(
        self,
        title: Union[str, TitleSelection],
        quality: Union[str, QualityProfile, None],
    ) -> PreparedLaunch:
        credential = self._credentials.get_credential()
        if not credential or not str(credential).strip():
            logger.info("launch refused: no credential available")
            raise NotAuthenticated("sign in before launching a title")

        selection = TitleSelection.coerce(title)
        if not selection.title_id:
            raise ValueError("title must not be empty")
        profile = resolve_quality(quality)
        request = SessionRequest(
            title=selection,
            quality=profile,
            preferred_server=self._preferred_server,
        )
        logger.debug(
            "request built title=%s quality=%s (%s@%d %s)",
            selection.name, profile.name, profile.resolution, profile.fps, profile.codec,
        )
        return PreparedLaunch(request=request, credential=str(credential))
