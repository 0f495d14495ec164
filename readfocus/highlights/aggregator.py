from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .models import Credential, Library, Passage
from .session import UpstreamSessionClient

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Credential], UpstreamSessionClient]


class ContentAggregator:
    """
    Composes session-client calls into library listings and per-library
    passage sets enriched with the library title and author. A fresh session
    client is created per call, so calls from different threads do not share
    cookie state. Sequential callers carry the rotated credential forward
    themselves via `fetch_passages`.
    """

    def __init__(self, session_factory: SessionFactory = UpstreamSessionClient):
        self.session_factory = session_factory
        self._known: Dict[str, Library] = {}

    def get_libraries(self, credential: Credential) -> List[Library]:
        with self.session_factory(credential) as session:
            libraries = session.list_libraries()
        self._known = {lib.library_id: lib for lib in libraries}
        return libraries

    def get_passages(
        self,
        credential: Credential,
        library_id: str,
        library: Optional[Library] = None,
    ) -> List[Passage]:
        passages, _ = self.fetch_passages(credential, library_id, library)
        return passages

    def fetch_passages(
        self,
        credential: Credential,
        library_id: str,
        library: Optional[Library] = None,
    ) -> Tuple[List[Passage], Credential]:
        """
        Like `get_passages`, also returning the credential as rotated by the
        responses of this fetch.
        """
        with self.session_factory(credential) as session:
            passages, total = session.list_passages_for_library(library_id)
            rotated = session.credential

        owner = library or self._known.get(library_id)
        if owner is None:
            logger.debug("No metadata known for book %s; passages left without title", library_id)
            return passages, rotated
        logger.debug("Book %s (%s): %s unique of %s fetched", library_id, owner.title, len(passages), total)
        return [p.with_library(owner) for p in passages], rotated
