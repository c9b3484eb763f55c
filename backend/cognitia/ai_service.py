import json
import logging
import re
from typing import Any

from groq import Groq

from .config import settings
from .errors import AIGenerationError


logger = logging.getLogger(__name__)

POST_QUIZ_SIZE = 7
PRE_QUIZ_SIZE = 3
POST_SKILLS = ["Application"] * 3 + ["Critical thinking"] * 2 + ["Human skills / ethics"] * 2

GUIDE_SYSTEM_PROMPT = (
    "You are a pedagogical architect for K-12 teachers. Design a single class session guide. "
    "Return ONE valid JSON object with the keys: metadata {title, summary, duration, suggested_grade}, "
    "curriculum {area, competency, capacity, performance, cross_cutting_focus}, "
    "objectives {cognitive, human}, "
    "sequence [{phase: START|DEVELOPMENT|CLOSING, subtitle, time, activity, skill_focus, teacher_role}], "
    "resources_and_assessment {materials: [], criteria: [], instrument}, "
    "teacher_tips {differentiation, extra_challenge}. No markdown, no text outside the JSON."
)

PRE_QUIZ_SYSTEM_PROMPT = (
    "You design micro-learning pre-class quizzes. Write a learning stimulus (a paragraph of at most 120 words "
    "with the one idea students must know before class, plus an image prompt) and exactly 3 multiple choice "
    "questions answerable from that paragraph, each about a different key concept of 2-4 words, each with "
    "exactly 3 options and feedback for right and wrong answers. Return ONE valid JSON object: "
    '{"stimulus": {"title", "content", "visual_description", "reading_time"}, '
    '"questions": [{"question", "concept", "options": [{"text", "is_correct"}], '
    '"feedback_correct", "feedback_incorrect"}]}. No markdown, no text outside the JSON.'
)

POST_QUIZ_SYSTEM_PROMPT = (
    "You are a competency assessment architect. Design an exit quiz of exactly 7 situational questions for "
    "15 minutes: questions 1-3 application, 4-5 critical thinking, 6-7 human skills / ethics. Each question has "
    "a short scenario (max 30 words), the challenge, 4 plausible options with exactly one correct, the concept "
    "assessed and a detailed explanation. Return ONE valid JSON object: "
    '{"metadata": {"title", "suggested_time", "purpose", "taxonomy_level"}, '
    '"questions": [{"number", "skill", "scenario", "question", "options": [{"text", "is_correct"}], '
    '"concept", "explanation"}]}. No markdown, no text outside the JSON.'
)

RECOMMENDATIONS_SYSTEM_PROMPT = (
    "You are a pedagogical analyst. From aggregated quiz results, diagnose the group and give the teacher "
    "concrete recommendations. Return ONE valid JSON object: "
    '{"overview": {"participation", "group_average", "readiness": "low|medium|high", "summary"}, '
    '"weak_concepts": [{"concept", "question_id", "question_text", "percent_correct", "error_pattern", '
    '"priority": "high|medium|low"}], '
    '"recommendations": [{"title", "content", "kind": "methodology|content|activity|follow_up", '
    '"priority": "high|medium|low", "moment": "during_class|next_session", "concept"}], '
    '"alerts": []}. No markdown, no text outside the JSON.'
)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_json_content(raw: str) -> Any:
    """Parse a model reply that should be JSON but may carry fences or chatter."""
    if not raw or not raw.strip():
        raise AIGenerationError("Empty AI response")
    content = raw.strip()

    fenced = _FENCE.search(content)
    if fenced:
        content = fenced.group(1).strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    candidates = []
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = content.find(opener), content.rfind(closer)
        if start != -1 and end > start:
            candidates.append((start, content[start:end + 1]))
    for _, snippet in sorted(candidates):
        try:
            return json.loads(snippet)
        except json.JSONDecodeError:
            continue
    logger.error(f"Failed to parse AI response as JSON: {raw[:200]}")
    raise AIGenerationError("Failed to parse AI response as valid JSON")


def _default_options(count: int) -> list[dict[str, Any]]:
    return [{"text": f"Option {chr(65 + i)}", "is_correct": i == 1} for i in range(count)]


def _mark_answer(options: list[dict[str, Any]], answer: Any) -> None:
    """Mark the option named by a separate answer field: its text or its letter."""
    wanted = str(answer).strip()
    for option in options:
        if option["text"].lower() == wanted.lower():
            option["is_correct"] = True
            return
    if len(wanted) == 1 and wanted.isalpha():
        index = ord(wanted.upper()) - 65
        if 0 <= index < len(options):
            options[index]["is_correct"] = True


def _options(raw_options: Any, fallback_count: int, answer: Any = None) -> list[dict[str, Any]]:
    options = []
    for option in raw_options if isinstance(raw_options, list) else []:
        if isinstance(option, dict):
            options.append({"text": str(option.get("text") or "").strip(), "is_correct": bool(option.get("is_correct"))})
        else:
            options.append({"text": str(option).strip(), "is_correct": False})
    options = [option for option in options if option["text"]]
    if answer and not any(option["is_correct"] for option in options):
        _mark_answer(options, answer)

    correct = sum(1 for option in options if option["is_correct"])
    if len(options) < 2 or correct != 1:
        if options:
            logger.warning(f"Discarding AI options with {correct} correct answers out of {len(options)}")
        return _default_options(fallback_count)
    return options


def _items(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item if isinstance(item, dict) else {} for item in value]


def normalize_post_quiz(data: Any, topic: str) -> dict[str, Any]:
    data = data if isinstance(data, dict) else {}
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    questions = []
    for index, item in enumerate(_items(data.get("questions"))[:POST_QUIZ_SIZE]):
        questions.append({
            "number": index + 1,
            "skill": POST_SKILLS[index],
            "scenario": item.get("scenario") or "",
            "question": item.get("question") or f"Question {index + 1} about {topic}",
            "options": _options(item.get("options"), 4, item.get("correct_answer") or item.get("answer")),
            "concept": item.get("concept") or topic,
            "explanation": item.get("explanation") or "",
        })

    while len(questions) < POST_QUIZ_SIZE:
        number = len(questions) + 1
        questions.append({
            "number": number,
            "skill": POST_SKILLS[number - 1],
            "scenario": f"A situation related to {topic}",
            "question": f"Question {number} about {topic}",
            "options": _default_options(4),
            "concept": topic,
            "explanation": f"The correct answer shows understanding of {topic}.",
        })

    return {
        "metadata": {
            "title": metadata.get("title") or f"Final assessment: {topic}",
            "suggested_time": metadata.get("suggested_time") or "15 minutes",
            "purpose": metadata.get("purpose") or "Certify understanding and application of the concepts learned",
            "taxonomy_level": metadata.get("taxonomy_level") or "Application and analysis",
        },
        "questions": questions,
    }


def normalize_pre_quiz(data: Any, topic: str) -> dict[str, Any]:
    data = data if isinstance(data, dict) else {}
    stimulus = data.get("stimulus") if isinstance(data.get("stimulus"), dict) else {}
    questions = []
    for index, item in enumerate(_items(data.get("questions"))):
        questions.append({
            "question": item.get("question") or f"Question {index + 1} about {topic}",
            "concept": item.get("concept") or topic,
            "options": _options(item.get("options"), 3, item.get("correct_answer") or item.get("answer")),
            "feedback_correct": item.get("feedback_correct") or "Correct! You understood the concept.",
            "feedback_incorrect": item.get("feedback_incorrect") or "Read the text again to find the answer.",
        })

    while len(questions) < PRE_QUIZ_SIZE:
        number = len(questions) + 1
        questions.append({
            "question": f"Question {number} about {topic}",
            "concept": topic,
            "options": _default_options(3),
            "feedback_correct": "Correct! You understood the concept.",
            "feedback_incorrect": "Read the text again to find the answer.",
        })

    return {
        "stimulus": {
            "title": stimulus.get("title") or f"Get ready for: {topic}",
            "content": stimulus.get("content") or f"Introductory content about {topic}",
            "visual_description": stimulus.get("visual_description") or f"Educational illustration about {topic}",
            "reading_time": stimulus.get("reading_time") or "2 minutes",
        },
        "questions": questions,
    }


def _mapping(value: Any, default: dict[str, Any]) -> dict[str, Any]:
    return value if isinstance(value, dict) and value else default


def _text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    texts = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name") or item.get("text") or item.get("description") or " ".join(
                str(part) for part in item.values() if part
            )
        text = str(item).strip()
        if text:
            texts.append(text)
    return texts


def _objectives(value: Any) -> dict[str, str]:
    if isinstance(value, str):
        return {"cognitive": value.strip(), "human": ""}
    if isinstance(value, dict):
        return {key: " ".join(_text_list(value.get(key))) for key in ("cognitive", "human")}
    return {}


def normalize_guide(data: Any, topic: str, *, grade: str | None, area: str | None,
                    duration: int, resources: list[str]) -> dict[str, Any]:
    data = data if isinstance(data, dict) else {}
    objectives = _objectives(data.get("objectives"))
    assessment = _mapping(data.get("resources_and_assessment"), {})
    sequence = [step for step in _items(data.get("sequence")) if step]
    return {
        "metadata": _mapping(data.get("metadata"), {
            "title": topic,
            "summary": f"Class session about {topic}",
            "duration": duration,
            "suggested_grade": grade or "unspecified",
        }),
        "curriculum": _mapping(data.get("curriculum"), {
            "area": area or "unspecified",
            "competency": "",
            "capacity": "",
            "performance": "",
            "cross_cutting_focus": "",
        }),
        "objectives": {
            "cognitive": objectives.get("cognitive") or f"Understand the key ideas of {topic}",
            "human": objectives.get("human") or "Collaborate respectfully with classmates",
        },
        "sequence": sequence or [
            {"phase": "START", "subtitle": "Activation", "time": "10 min",
             "activity": f"Guided questions about {topic}", "skill_focus": "Curiosity", "teacher_role": "Facilitator"},
            {"phase": "DEVELOPMENT", "subtitle": "Practice", "time": f"{max(duration - 20, 10)} min",
             "activity": f"Worked examples on {topic}", "skill_focus": "Reasoning", "teacher_role": "Guide"},
            {"phase": "CLOSING", "subtitle": "Reflection", "time": "10 min",
             "activity": "Exit ticket and reflection", "skill_focus": "Metacognition", "teacher_role": "Mediator"},
        ],
        "resources_and_assessment": {
            "materials": _text_list(assessment.get("materials")) or list(resources),
            "criteria": _text_list(assessment.get("criteria")),
            "instrument": " ".join(_text_list(assessment.get("instrument"))) or "Checklist",
        },
        "teacher_tips": _mapping(data.get("teacher_tips"), {"differentiation": "", "extra_challenge": ""}),
    }


def fallback_analysis(kind: str) -> dict[str, Any]:
    return {
        "overview": {
            "participation": 0,
            "group_average": 0,
            "readiness": "low",
            "summary": "The automatic analysis could not be generated.",
        },
        "weak_concepts": [],
        "recommendations": [{
            "title": "Manual review required",
            "content": "The automatic analysis could not be completed. Review the answers manually.",
            "kind": "follow_up",
            "priority": "high",
            "moment": "during_class" if kind == "pre" else "next_session",
            "concept": "General",
        }],
        "alerts": ["AI recommendations could not be processed"],
    }


def build_client(api_key: str | None = None) -> Groq | None:
    api_key = api_key if api_key is not None else settings.groq_api_key
    if not api_key:
        logger.warning("GROQ_API_KEY not found. AI features disabled.")
        return None
    try:
        client = Groq(api_key=api_key)
    except Exception as exc:
        logger.error(f"Failed to initialize AI client. Error: {exc}")
        return None
    logger.info("AI generation initialized (Groq powered).")
    return client


class LessonAI:
    """Lesson guide, quiz and recommendation generation on top of a chat completion client."""

    def __init__(self, client: Any = None, model: str | None = None, temperature: float | None = None):
        self.client = client
        self.model = model or settings.ai_model
        self.temperature = settings.ai_temperature if temperature is None else temperature

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def complete_json(self, system_prompt: str, user_prompt: str) -> Any:
        if not self.enabled:
            raise AIGenerationError("AI features are disabled")
        try:
            completion = self.client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                model=self.model,
                temperature=self.temperature,
            )
            raw_content = completion.choices[0].message.content or ""
        except Exception as exc:
            logger.error(f"Groq API Error: {exc}")
            raise AIGenerationError("AI processing failed.") from exc
        return parse_json_content(raw_content)

    def _safe_json(self, label: str, system_prompt: str, user_prompt: str) -> Any:
        try:
            return self.complete_json(system_prompt, user_prompt)
        except AIGenerationError as exc:
            logger.warning(f"{label} generation fell back to defaults: {exc}")
            return {}

    def generate_lesson_guide(
        self,
        topic: str,
        context: str | None = None,
        *,
        grade: str | None = None,
        area: str | None = None,
        duration: int = 55,
        resources: list[str] | None = None,
    ) -> dict[str, Any]:
        resources = resources or []
        prompt = (
            f"Topic: {topic}\n"
            f"Area: {area or 'infer from the topic'}\n"
            f"Grade: {grade or 'infer, secondary school'}\n"
            f"Duration: {duration} minutes\n"
            f"Available resources: {', '.join(resources) or 'standard classroom'}\n"
            f"Group context: {context or 'not provided'}"
        )
        data = self._safe_json("Lesson guide", GUIDE_SYSTEM_PROMPT, prompt)
        return normalize_guide(data, topic, grade=grade, area=area, duration=duration, resources=resources)

    def generate_pre_quiz(self, topic: str, context: str | None = None, *, grade: str | None = None,
                          area: str | None = None, guide: dict | None = None, reference: str = "") -> dict[str, Any]:
        prompt = self._quiz_prompt(topic, context, grade, area, guide, reference)
        prompt += f"\nGenerate the pre-class quiz with exactly {PRE_QUIZ_SIZE} questions."
        return normalize_pre_quiz(self._safe_json("Pre quiz", PRE_QUIZ_SYSTEM_PROMPT, prompt), topic)

    def generate_post_quiz(self, topic: str, context: str | None = None, *, grade: str | None = None,
                           area: str | None = None, guide: dict | None = None, reference: str = "") -> dict[str, Any]:
        prompt = self._quiz_prompt(topic, context, grade, area, guide, reference)
        prompt += (
            f"\nGenerate the exit quiz with exactly {POST_QUIZ_SIZE} questions: "
            "3 application (1-3), 2 critical thinking (4-5), 2 human skills / ethics (6-7)."
        )
        return normalize_post_quiz(self._safe_json("Post quiz", POST_QUIZ_SYSTEM_PROMPT, prompt), topic)

    def recommend(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            result = self.complete_json(RECOMMENDATIONS_SYSTEM_PROMPT, json.dumps(payload, default=str))
        except AIGenerationError as exc:
            logger.error(f"Error processing quiz responses: {exc}")
            return fallback_analysis(kind)
        if not isinstance(result, dict):
            return fallback_analysis(kind)
        result.setdefault("overview", {})
        result.setdefault("weak_concepts", [])
        result.setdefault("recommendations", [])
        result.setdefault("alerts", [])
        return result

    @staticmethod
    def _quiz_prompt(topic, context, grade, area, guide, reference) -> str:
        prompt = (
            f"Topic: {topic}\n"
            f"Grade: {grade or 'unspecified'}\n"
            f"Area: {area or 'unspecified'}\n"
            f"Group context: {context or 'standard level group'}\n"
        )
        if isinstance(guide, dict) and guide:
            objectives = _objectives(guide.get("objectives"))
            criteria = _text_list(_mapping(guide.get("resources_and_assessment"), {}).get("criteria"))
            development = [str(step.get("activity") or "") for step in _items(guide.get("sequence"))
                           if step.get("phase") == "DEVELOPMENT"]
            prompt += "\nClass guide:\n"
            if objectives.get("cognitive"):
                prompt += f"- Cognitive objective: {objectives['cognitive']}\n"
            if objectives.get("human"):
                prompt += f"- Human objective: {objectives['human']}\n"
            if development:
                prompt += f"- Development activity: {' '.join(development)}\n"
            if criteria:
                prompt += f"- Assessment criteria: {', '.join(criteria)}\n"
        if reference:
            prompt += f"\nReference material (use this content to generate questions):\n{reference}\n"
        return prompt
