import os
import tempfile

import pytest

# api.main configures file logging at import time
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="negotiator-logs-"))
os.environ.pop("GOOGLE_API_KEY", None)

from negotiator.models import TranslationResult, target_language
from negotiator.orchestrator import NegotiationService
from store.change_feed import ChangeFeed
from store.row_store import RowStore


class FakeTranslator:
    def __init__(self, intent="offer", error=None):
        self.intent = intent
        self.error = error
        self.calls = []

    def translate(self, content, source_language, message_id=None, session_id="unknown", target=None):
        self.calls.append((message_id, content, source_language))
        if self.error is not None:
            raise self.error
        return TranslationResult(
            translation=f"[{target or target_language(source_language)}] {content}",
            intent=self.intent,
            message_id=message_id,
        )


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def store(tmp_path, feed):
    return RowStore(db_path=str(tmp_path / "negotiator.db"), feed=feed)


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def service(store, translator):
    return NegotiationService(store, translator=translator, public_base_url="http://testserver/join")
