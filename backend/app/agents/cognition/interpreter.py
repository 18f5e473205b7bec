"""Cognition Agent that interprets free-text nudge responses with ChatGPT"""
from typing import Any, Dict, Optional
import json
from openai import OpenAI
from app.config import settings
from app.models.nudge import (
    FollowUpRecommendation,
    FollowUpUrgency,
    Nudge,
    ResponseInterpretation,
    Sentiment,
)
from app.utils.monitoring import StructuredLogger


RESPONSE_INTERPRETATION_PROMPT = """You are a friendly, supportive healthcare assistant helping patients stay on track with their care.

Interpret a patient's free-text response to a check-in. Analyze:
1. Overall sentiment about their health or medication experience
2. Any specific data that can be extracted (symptoms, concerns, positive outcomes)
3. Whether follow-up is needed and how soon

Respond with JSON only:
{
  "sentiment": "positive" | "neutral" | "negative" | "concerning",
  "extractedData": { optional key-value pairs },
  "followUpNeeded": true/false,
  "followUp": {
    "urgency": "immediate" | "same_day" | "next_day" | "3_days" | "1_week" | "none",
    "reason": "Why this urgency level",
    "focusArea": "What the follow-up should address",
    "suggestedMessage": "Optional follow-up message"
  },
  "suggestedAction": "Optional action to take",
  "summary": "One sentence summary of what the patient shared"
}

Follow-up urgency guidelines:
- immediate: concerning symptoms, patient distress, safety issues
- same_day: side effects mentioned, elevated readings reported
- next_day: negative experience, needs encouragement, missed doses
- 3_days: minor issues, patient adjusting
- 1_week: routine check-in, stable situation
- none: positive response, on track

Never give medical advice, dosing suggestions, or diagnoses."""

MIN_RESPONSE_LENGTH = 2


def neutral_interpretation(summary: str) -> ResponseInterpretation:
    return ResponseInterpretation(
        sentiment=Sentiment.NEUTRAL,
        follow_up=FollowUpRecommendation(needed=False, urgency=FollowUpUrgency.NONE.value, reason="No follow-up needed"),
        summary=summary,
    )


def parse_follow_up(follow_up: Any, fallback_needed: bool) -> FollowUpRecommendation:
    """Validate the model's follow-up block; unknown urgencies fall back to next_day or none"""
    fallback_urgency = FollowUpUrgency.NEXT_DAY if fallback_needed else FollowUpUrgency.NONE

    if isinstance(follow_up, dict):
        urgency = FollowUpUrgency.parse(follow_up.get("urgency")) or fallback_urgency
        return FollowUpRecommendation(
            needed=urgency != FollowUpUrgency.NONE,
            urgency=urgency.value,
            reason=follow_up.get("reason") if isinstance(follow_up.get("reason"), str) else "AI recommended",
            focus_area=follow_up.get("focusArea") if isinstance(follow_up.get("focusArea"), str) else None,
            suggested_message=(
                follow_up.get("suggestedMessage") if isinstance(follow_up.get("suggestedMessage"), str) else None
            ),
        )

    return FollowUpRecommendation(
        needed=fallback_needed,
        urgency=fallback_urgency.value,
        reason="Follow-up recommended" if fallback_needed else "No follow-up needed",
    )


def parse_interpretation(content: str) -> ResponseInterpretation:
    parsed = json.loads(content)
    if not isinstance(parsed, dict):
        raise ValueError("Invalid JSON response format")

    try:
        sentiment = Sentiment(parsed.get("sentiment"))
    except ValueError:
        sentiment = Sentiment.NEUTRAL

    extracted = parsed.get("extractedData")
    summary = parsed.get("summary")

    return ResponseInterpretation(
        sentiment=sentiment,
        extracted_data=extracted if isinstance(extracted, dict) else {},
        follow_up=parse_follow_up(parsed.get("followUp"), parsed.get("followUpNeeded") is True),
        suggested_action=parsed.get("suggestedAction") if isinstance(parsed.get("suggestedAction"), str) else None,
        summary=summary if isinstance(summary, str) and summary.strip() else "Response received.",
    )


class ResponseInterpreter:
    """Classifies free-text responses into a sentiment and an optional follow-up"""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.OPENAI_MODEL

    @property
    def client(self) -> Optional[OpenAI]:
        if self._client is None and settings.OPENAI_API_KEY:
            self._client = OpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=settings.OPENAI_TIMEOUT_SECONDS,
                max_retries=2,
            )
        return self._client

    def interpret(self, nudge: Nudge, user_response: str) -> ResponseInterpretation:
        if not user_response or len(user_response.strip()) < MIN_RESPONSE_LENGTH:
            return neutral_interpretation("No response provided.")

        client = self.client
        if client is None:
            StructuredLogger.log_event(
                "response_interpretation_disabled",
                "OPENAI_API_KEY not configured, treating response as neutral",
                user_id=nudge.user_id,
                level="WARNING",
            )
            return neutral_interpretation("Response noted.")

        context_lines = [
            f"Nudge type: {nudge.type}",
            f"Condition: {nudge.condition_id}" if nudge.condition_id else "",
            f"Medication: {nudge.medication_name}" if nudge.medication_name else "",
            f'Original nudge message: "{nudge.message}"',
            "",
            f'Patient\'s response: "{user_response}"',
            "",
            "Interpret this response and determine if follow-up is needed.",
        ]

        try:
            response = client.chat.completions.create(
                model=self.model,
                temperature=0.3,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": RESPONSE_INTERPRETATION_PROMPT},
                    {"role": "user", "content": "\n".join(filter(None, context_lines))},
                ],
            )
            content = (response.choices[0].message.content or "").strip()
            if not content:
                raise ValueError("Empty response from OpenAI")

            interpretation = parse_interpretation(content)

            StructuredLogger.log_event(
                "response_interpretation_success",
                f"Interpreted response as {interpretation.sentiment.value}",
                user_id=nudge.user_id,
                metadata={
                    "nudge_id": nudge.id,
                    "follow_up_urgency": interpretation.follow_up.urgency if interpretation.follow_up else None,
                },
            )
            return interpretation

        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "interpret", "nudge_id": nudge.id},
                user_id=nudge.user_id,
            )
            return neutral_interpretation("Response noted.")

    @staticmethod
    def to_record(interpretation: ResponseInterpretation) -> Dict[str, Any]:
        """Shape stored on the completed nudge as ai_interpretation"""
        return {
            "sentiment": interpretation.sentiment.value,
            "summary": interpretation.summary,
            "followUpNeeded": interpretation.follow_up_needed,
            "followUpUrgency": interpretation.follow_up.urgency if interpretation.follow_up else None,
            "extractedData": interpretation.extracted_data,
        }
