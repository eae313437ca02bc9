"""Translation Agent for bilingual settlement negotiation chat.

This agent translates each chat message into the counterpart language and
classifies its negotiation intent (offer, acceptance or inquiry) with a single
structured Gemini call. Ambiguous model output degrades to the original text
and the `inquiry` intent; provider failures are raised as typed classifier
errors so callers can tell rate limiting and quota exhaustion apart.
"""

import os
from typing import Any, Optional

import msgspec
from loguru import logger

from google import genai
from google.genai import types

from negotiator.error_handling import (
    ClassifierError,
    QuotaExceededError,
    RateLimitedError,
)
from negotiator.logging_config import get_session_logger
from negotiator.models import (
    DEFAULT_INTENT,
    INTENTS,
    SUPPORTED_LANGUAGES,
    TranslationResult,
    target_language,
)


class _ClassifierPayload(msgspec.Struct):
    translation: Optional[str] = None
    intent: Optional[str] = None


TRANSLATION_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "translation": types.Schema(
            type=types.Type.STRING,
            description="The translated text"
        ),
        "intent": types.Schema(
            type=types.Type.STRING,
            enum=list(INTENTS)
        ),
    },
    required=["translation", "intent"]
)


def classify_failure(error: Exception) -> ClassifierError:
    """Map a provider exception onto the classifier error taxonomy.

    google-genai raises `errors.APIError` subclasses carrying the HTTP status
    in `code`.
    """
    code = getattr(error, "code", None)
    if code == 429:
        return RateLimitedError(f"Rate limited, try again later: {error}")
    if code == 402:
        return QuotaExceededError(f"Payment required: {error}")
    return ClassifierError(f"AI gateway error: {error}")


class TranslationAgent:
    """Agent responsible for message translation and intent classification.

    This agent:
    1. Picks the complementary target language for the message
    2. Translates the text, keeping legal meaning intact
    3. Labels the message as an offer, acceptance or inquiry
    4. Falls back to the untouched text and `inquiry` on unusable output
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        client: Optional[Any] = None
    ):
        """Initialize the Translation Agent.

        Args:
            api_key: Google API key for Gemini (defaults to GOOGLE_API_KEY env var)
            model_name: Gemini model to use (defaults to TRANSLATION_MODEL env var)
            client: Preconfigured genai client, mainly for tests
        """
        self.model_name = model_name or os.getenv("TRANSLATION_MODEL", "gemini-2.5-flash-lite")

        if client is not None:
            self.client = client
        else:
            self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
            if not self.api_key:
                raise ClassifierError("No API key provided for Translation Agent")
            self.client = genai.Client(api_key=self.api_key)

        logger.info("Translation Agent initialized", model=self.model_name)

    def _build_instruction(self, source_language: str, target: str) -> str:
        source_name = SUPPORTED_LANGUAGES.get(source_language, source_language)
        target_name = SUPPORTED_LANGUAGES.get(target, target)
        supported = ", ".join(f"{name} ({code})" for code, name in SUPPORTED_LANGUAGES.items())

        return f"""You are a legal translation and intent classification assistant. The supported languages are {supported}.
Given a message in a legal negotiation context:
1. Translate the text from {source_name} to {target_name}. If the source is already in the target language, provide the same text.
2. Classify the intent as one of: "offer" (proposing terms), "acceptance" (agreeing to terms), or "inquiry" (asking questions or making general statements).

Respond ONLY with valid JSON: {{"translation": "...", "intent": "offer|acceptance|inquiry"}}"""

    def translate(
        self,
        content: str,
        source_language: str,
        message_id: Optional[str] = None,
        session_id: str = "unknown",
        target: Optional[str] = None
    ) -> TranslationResult:
        """Translate a message and classify its intent.

        Args:
            content: Original message text
            source_language: Declared language code of the text
            message_id: Identifier echoed back in the result
            session_id: Session identifier for logging
            target: Reader language; defaults to the complementary language

        Returns:
            TranslationResult with the translated text and intent label

        Raises:
            RateLimitedError: Provider returned 429
            QuotaExceededError: Provider returned 402
            ClassifierError: Any other provider failure
        """
        session_logger = get_session_logger(session_id, "TranslationAgent")
        target = target or target_language(source_language)

        if source_language == target:
            return TranslationResult(translation=content, intent=DEFAULT_INTENT, message_id=message_id)

        session_logger.debug(f"Translating message {message_id} from {source_language} to {target}")

        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part(text=content)]
                    )
                ],
                config=types.GenerateContentConfig(
                    system_instruction=self._build_instruction(source_language, target),
                    temperature=0.2,
                    response_mime_type="application/json",
                    response_schema=TRANSLATION_SCHEMA
                )
            )
        except Exception as e:
            failure = classify_failure(e)
            session_logger.error(
                "Translation request failed",
                error=str(e),
                error_type=type(failure).__name__
            )
            raise failure from e

        result = self._parse_response(getattr(response, "text", None), content, message_id)
        session_logger.info(
            "Message translated",
            message_id=message_id,
            intent=result.intent
        )
        return result

    def _parse_response(
        self,
        response_text: Optional[str],
        content: str,
        message_id: Optional[str]
    ) -> TranslationResult:
        """Decode the model's JSON answer, falling back field by field."""
        translation = content
        intent = DEFAULT_INTENT

        raw = (response_text or "").strip()
        if raw.startswith("```"):
            raw = raw.strip("`")
            if raw.startswith("json"):
                raw = raw[4:]
            raw = raw.strip()

        try:
            payload = msgspec.json.decode(raw, type=_ClassifierPayload)
        except (msgspec.DecodeError, msgspec.ValidationError):
            logger.warning("Failed to parse AI response, keeping original text")
            return TranslationResult(translation=translation, intent=intent, message_id=message_id)

        if payload.translation and payload.translation.strip():
            translation = payload.translation
        if payload.intent in INTENTS:
            intent = payload.intent

        return TranslationResult(translation=translation, intent=intent, message_id=message_id)


def create_translation_agent(**kwargs) -> Optional[TranslationAgent]:
    """Build a TranslationAgent, or None when no API key is configured."""
    try:
        return TranslationAgent(**kwargs)
    except ClassifierError as e:
        logger.warning(f"Translation disabled: {e}")
        return None
