"""
Metric Prompts
Built-in metric prompts and the rules for custom prompt text
"""
from typing import Dict, List

from core import MetricConfig


RESPONSE_FORMAT = """## Response format
Reply with a single JSON object and nothing else:
{
  "score": <integer from -2 to 2>,
  "comment": "<one sentence verdict>",
  "examples": ["<short quote from the lesson>", "<another quote>"],
  "detailed_analysis": "<a paragraph explaining the score>",
  "suggestions": ["<concrete improvement>", "<another improvement>"]
}"""

JSON_FORMAT_SUFFIX = "\n\n" + RESPONSE_FORMAT

_LESSON_BLOCK = """## Lesson
{{content}}"""


def _metric_prompt(role: str, criteria: str) -> str:
    return f"{role}\n\n## Criteria\n{criteria}\n\n{RESPONSE_FORMAT}\n\n{_LESSON_BLOCK}"


LOGIC_PROMPT = _metric_prompt(
    "You are a methodologist reviewing the logical structure of an online lesson.",
    """- Ideas are introduced in an order where each step builds on the previous one
- Claims are argued, not just stated
- There are no gaps or jumps a student cannot follow
- Conclusions follow from the material

-2 means the lesson is chaotic, +2 means the reasoning is clear and complete.""",
)

PRACTICAL_PROMPT = _metric_prompt(
    "You are a senior practitioner judging how applicable a lesson is to real work.",
    """- The material connects to tasks a student will actually face
- Examples are realistic rather than toy cases
- The student can apply the result right after the lesson

-2 means purely abstract, +2 means immediately usable in practice.""",
)

COMPLEXITY_PROMPT = _metric_prompt(
    "You are a curriculum designer assessing the depth and difficulty of a lesson.",
    """- The depth matches the stated audience
- Hard topics are broken down instead of skipped
- The lesson neither oversimplifies nor overwhelms

-2 means badly mismatched difficulty, +2 means well calibrated depth.""",
)

INTEREST_PROMPT = _metric_prompt(
    "You are an editor evaluating how engaging a lesson is for a student.",
    """- The opening motivates why the topic matters
- The tone is lively and the pacing varied
- Questions, stories or tasks keep attention

-2 means dull and hard to stay with, +2 means genuinely engaging.""",
)

CARE_PROMPT = _metric_prompt(
    "You are a proofreading editor checking the craftsmanship of a lesson.",
    """- Terms are defined and used consistently
- There are no factual mistakes or typos
- Formatting, code samples and illustrations are tidy
- The author anticipates typical student mistakes

-2 means careless, +2 means polished with attention to detail.""",
)

COGNITIVE_LOAD_PROMPT = _metric_prompt(
    "You are a learning scientist estimating the cognitive load a lesson puts on a student.",
    """- The complexity of the topic is balanced against the amount of new material
- Extraneous details are removed
- Examples and structure support working memory

-2 means overloaded, +2 means the load is well managed.""",
)

BUILTIN_PROMPTS: Dict[str, str] = {
    "logic": LOGIC_PROMPT,
    "practical": PRACTICAL_PROMPT,
    "complexity": COMPLEXITY_PROMPT,
    "interest": INTEREST_PROMPT,
    "care": CARE_PROMPT,
    "cognitive_load": COGNITIVE_LOAD_PROMPT,
}

BUILTIN_METRIC_NAMES = ("logic", "practical", "complexity", "interest", "care")

METRIC_DISPLAY_NAMES = {
    "logic": "Logic Structure",
    "practical": "Practical Value",
    "complexity": "Complexity Level",
    "interest": "Engagement Factor",
    "care": "Quality of Care",
    "cognitive_load": "Cognitive Load",
}

TITLE_PROMPT = """Read this lesson and give it a specific technical title of 3 to 6 words that names its actual topic.
Avoid generic words such as "Basics", "Introduction" or "Learning material".
Use the concrete technologies, methods or concepts from the text.
Answer with the title only.

Lesson:
{content}...

Title:"""


def builtin_metrics(enable_cognitive_load: bool = False) -> List[MetricConfig]:
    names = list(BUILTIN_METRIC_NAMES)
    if enable_cognitive_load:
        names.append("cognitive_load")
    return [
        MetricConfig(id=name, name=name, prompt_text=BUILTIN_PROMPTS[name], display_order=index + 1)
        for index, name in enumerate(names)
    ]


def is_builtin(name: str) -> bool:
    return name in BUILTIN_PROMPTS


def prompt_for(metric: MetricConfig) -> str:
    """
    Prompt used for one metric.

    Built-in names always use the built-in prompt. Custom prompts are used
    as written, with the JSON response format appended when they do not
    mention JSON themselves.
    """
    if is_builtin(metric.name):
        return BUILTIN_PROMPTS[metric.name]
    text = (metric.prompt_text or "").strip()
    if not text:
        text = f"Evaluate the lesson by the criterion \"{metric.name}\".\n\n{_LESSON_BLOCK}"
    if "json" not in text.lower():
        text += JSON_FORMAT_SUFFIX
    return text


def title_prompt(content: str, max_chars: int = 1500) -> str:
    return TITLE_PROMPT.format(content=content[:max_chars])


def display_name(metric: str) -> str:
    return METRIC_DISPLAY_NAMES.get(metric, metric)
