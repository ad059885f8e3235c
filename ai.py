"""
=============================================================================
AI.PY — OpenAI Client Wrapper
=============================================================================
The three things LifeRPG asks a language model for:

  1. reflection_reply()  → the next coaching turn while a journal is "reflecting"
  2. analyze_journal()   → title, synopsis, tone tags, day rating and the
                           stats / family members the day exercised
  3. suggest_tasks()     → a small batch of personal + family tasks

Every structured answer is requested as a JSON object and parsed ONCE here
into pydantic models, so the rest of the code only sees typed, clamped data.

Any failure (no key, SDK/network error, unparseable answer) raises; nothing
in this file touches the database.
"""

import json
import logging
from typing import Optional

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import ConfigurationError, NetworkError

logger = logging.getLogger("liferpg.ai")


class AIServiceError(NetworkError):
    """The model could not be reached or answered something unusable"""


TONE_TAGS = ("happy", "calm", "energized", "overwhelmed", "sad", "angry", "anxious")
MAX_TONE_TAGS = 2

JOURNAL_XP_MIN, JOURNAL_XP_MAX = 5, 50
TASK_XP_MIN, TASK_XP_MAX = 5, 100
MAX_SUGGESTIONS_PER_TYPE = 3


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


# =============================================================================
# ===================== PARSED ANSWERS ========================================
# =============================================================================

class XpAward(BaseModel):
    """XP the day earned for one stat or family member, by name"""
    name: str = Field(min_length=1)
    xp: int
    reason: Optional[str] = None

    @field_validator("xp")
    @classmethod
    def clamp_xp(cls, v: int) -> int:
        return _clamp(v, JOURNAL_XP_MIN, JOURNAL_XP_MAX)


class JournalAnalysis(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    synopsis: str
    summary: str = ""
    tone_tags: list[str] = []
    content_tags: list[str] = []
    day_rating: Optional[int] = None
    stat_awards: list[XpAward] = []
    family_awards: list[XpAward] = []

    @field_validator("tone_tags")
    @classmethod
    def known_tones_only(cls, v: list[str]) -> list[str]:
        tones = []
        for tag in v:
            tag = tag.strip().lower()
            if tag in TONE_TAGS and tag not in tones:
                tones.append(tag)
        return tones[:MAX_TONE_TAGS]

    @field_validator("content_tags")
    @classmethod
    def normalize_tags(cls, v: list[str]) -> list[str]:
        return [t.strip().lower() for t in v if t and t.strip()]

    @field_validator("day_rating")
    @classmethod
    def clamp_rating(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else _clamp(v, 1, 5)


class TaskSuggestion(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    stat: Optional[str] = None
    # name of a character stat, matched case-insensitively later
    family_member: Optional[str] = None
    xp_reward: int = 10

    @field_validator("xp_reward")
    @classmethod
    def clamp_xp(cls, v: int) -> int:
        return _clamp(v, TASK_XP_MIN, TASK_XP_MAX)


class TaskSuggestions(BaseModel):
    personal: list[TaskSuggestion] = []
    family: list[TaskSuggestion] = []

    @field_validator("personal", "family")
    @classmethod
    def cap(cls, v: list[TaskSuggestion]) -> list[TaskSuggestion]:
        return v[:MAX_SUGGESTIONS_PER_TYPE]


# =============================================================================
# ===================== PROMPTS ===============================================
# =============================================================================

REFLECTION_SYSTEM_PROMPT = (
    "You are a warm, curious journaling coach. The user wrote a journal entry "
    "about their day. Ask ONE thoughtful follow-up question or make one short "
    "observation that helps them reflect deeper. Keep it under 80 words."
)

ANALYSIS_SYSTEM_PROMPT = (
    "You analyze a finished journal entry and its reflection conversation. "
    "Answer with a JSON object with these keys:\n"
    '  "title": short title for the day (max 8 words),\n'
    '  "synopsis": one or two sentences,\n'
    '  "summary": a short paragraph,\n'
    f'  "tone_tags": at most {MAX_TONE_TAGS} of {list(TONE_TAGS)},\n'
    '  "content_tags": 1-5 lowercase topic tags,\n'
    '  "day_rating": integer 1-5,\n'
    '  "stat_awards": [{"name": <one of the listed stats>, "xp": 5-50, "reason": "..."}],\n'
    '  "family_awards": [{"name": <one of the listed family members>, "xp": 5-50, "reason": "..."}].\n'
    "Only award stats and family members the entry clearly involved."
)

TASKS_SYSTEM_PROMPT = (
    "You plan a realistic day. Suggest 1-3 personal tasks and 1-3 family tasks "
    "that fit the user's intent, goals, projects, the weather and the family "
    "members who need attention. Answer with a JSON object:\n"
    '  {"personal": [{"title", "description", "stat", "xp_reward"}],\n'
    '   "family": [{"title", "description", "family_member", "stat", "xp_reward"}]}\n'
    '"stat" must be one of the listed stats or null; xp_reward is 5-100.'
)


# =============================================================================
# ===================== CLIENT ================================================
# =============================================================================

class AIService:
    """
    Thin layer over the OpenAI chat completions API.

    `client` is anything shaped like openai.OpenAI (tests pass a stub);
    without one, a real client is built from the API key.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        client=None,
    ):
        self.model = model
        if client is None and api_key:
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None

    # ── Low level ──

    def _complete(self, messages: list[dict], json_mode: bool = False) -> str:
        if self._client is None:
            raise ConfigurationError("AI is not configured (OPENAI_API_KEY missing)")

        kwargs = {"model": self.model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            resp = self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error(f"❌ OpenAI call failed: {type(e).__name__}: {e}")
            raise AIServiceError("The AI service is unavailable, please try again") from e

        try:
            content = resp.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise AIServiceError("The AI service returned an empty answer") from e
        if not content or not content.strip():
            raise AIServiceError("The AI service returned an empty answer")
        return content.strip()

    def _complete_json(self, messages: list[dict], model_cls):
        raw = self._complete(messages, json_mode=True)
        try:
            return model_cls.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"⚠️ Unusable AI answer for {model_cls.__name__}: {e}")
            raise AIServiceError("The AI service returned an unusable answer") from e

    # ── Journal ──

    def reflection_reply(self, content: str, history: list[dict]) -> str:
        """Next assistant turn. `history` holds the turns so far, oldest first."""
        messages = [
            {"role": "system", "content": REFLECTION_SYSTEM_PROMPT},
            {"role": "user", "content": f"My journal entry for today:\n\n{content}"},
        ]
        for turn in history:
            messages.append({"role": turn["role"], "content": turn["content"]})
        return self._complete(messages)

    def analyze_journal(
        self,
        content: str,
        history: list[dict],
        stat_names: list[str],
        family_names: list[str],
    ) -> JournalAnalysis:
        conversation = "\n".join(f"{t['role']}: {t['content']}" for t in history)
        user_prompt = (
            f"Journal entry:\n{content}\n\n"
            f"Reflection conversation:\n{conversation or '(none)'}\n\n"
            f"Stats: {', '.join(stat_names) or '(none)'}\n"
            f"Family members: {', '.join(family_names) or '(none)'}"
        )
        return self._complete_json(
            [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            JournalAnalysis,
        )

    # ── Tasks ──

    def suggest_tasks(self, context: dict) -> TaskSuggestions:
        """`context` is the JSON-serializable bundle built by task_generation"""
        return self._complete_json(
            [
                {"role": "system", "content": TASKS_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(context, default=str)},
            ],
            TaskSuggestions,
        )
