"""Template selection and deterministic caption filling.

Phrase builders only draw from the semantic description and the static
tables below. None of those tables name identities, demographics or
emotions, so no caption can contain them.
"""

from __future__ import annotations

import re

from .config import PipelineConfig
from .models import SemanticDescription, SynthesizedCaption, TemplateSelection
from .semantic import environment_descriptor, person_descriptor


TEMPLATES: dict[str, str] = {
    "photo_with_person": "A person {action} {environment}.",
    "photo_with_people": "{people} {action} {environment}.",
    "photo_object_focused": "An image showing {primary_object} {context}.",
    "photo_scene": "{scene} scene with {objects}.",
    "screenshot_with_text": 'A screenshot displaying: "{text}".',
    "document_with_text": 'A document containing: "{text}".',
    "text_heavy": 'An image with text: "{text}".',
    "diagram": "A diagram showing {description}.",
    "minimal": "An image with unclear content.",
    "unknown": "An image.",
}

OBJECT_ACTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("laptop", "computer"), "using a computer"),
    (("phone",), "using a phone"),
    (("book",), "with a book"),
    (("food", "meal"), "with food"),
    (("cup", "mug"), "with a drink"),
    (("camera",), "with a camera"),
)

PLACE_PHRASES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("restaurant",), "at a restaurant"),
    (("park",), "at a park"),
    (("beach",), "at a beach"),
    (("street",), "on a street"),
)

MAX_LISTED_OBJECTS = 4
PLACEHOLDER_PATTERN = re.compile(r"\{[^}]+\}")


def article(word: str) -> str:
    return "an" if word[:1].lower() in "aeiou" else "a"


def with_article(word: str) -> str:
    return f"{article(word)} {word}"


def format_object_list(objects: list[str] | tuple[str, ...]) -> str:
    items = list(dict.fromkeys(objects))
    if not items:
        return "various elements"
    if len(items) == 1:
        return with_article(items[0])
    if len(items) == 2:
        return f"{with_article(items[0])} and {with_article(items[1])}"
    listed = items if len(items) <= MAX_LISTED_OBJECTS else items[: MAX_LISTED_OBJECTS - 1] + [items[-1]]
    return ", ".join(with_article(i) for i in listed[:-1]) + ", and " + with_article(listed[-1])


def build_action_phrase(semantic: SemanticDescription) -> str:
    if semantic.action_context:
        return semantic.action_context
    objects = semantic.primary_subjects + semantic.secondary_objects
    for obj in objects:
        for names, phrase in OBJECT_ACTIONS:
            if obj in names:
                return phrase
    return ""


def build_environment_phrase(semantic: SemanticDescription) -> str:
    descriptor = environment_descriptor(semantic.environment)
    if descriptor:
        return descriptor
    for names, phrase in PLACE_PHRASES:
        if any(n in semantic.all_labels for n in names):
            return phrase
    return ""


def build_primary_object_phrase(semantic: SemanticDescription) -> str:
    if not semantic.primary_subjects:
        return "unidentified objects"
    return with_article(semantic.primary_subjects[0])


def build_context_phrase(semantic: SemanticDescription) -> str:
    parts = [environment_descriptor(semantic.environment)]
    if semantic.secondary_objects:
        parts.append("with " + " and ".join(semantic.secondary_objects[:2]))
    return " ".join(p for p in parts if p)


def build_diagram_description(semantic: SemanticDescription) -> str:
    if semantic.text_present and semantic.text_content:
        return f'information related to "{semantic.text_content}"'
    if "chart" in semantic.all_labels or "graph" in semantic.all_labels:
        return "data visualization"
    if "flowchart" in semantic.all_labels:
        return "a process flow"
    return "visual information"


def apply_substitutions(template: str, substitutions: dict[str, str]) -> str:
    out = template
    for key, value in substitutions.items():
        out = out.replace("{" + key + "}", value)
    return out


def clean_caption(caption: str) -> str:
    out = PLACEHOLDER_PATTERN.sub("", caption)
    out = re.sub(r"\s+", " ", out)
    out = re.sub(r"\s+([.,])", r"\1", out)
    out = re.sub(r"\.+", ".", out)
    out = out.strip()
    return out[:1].upper() + out[1:]


def count_words(text: str) -> int:
    return len(text.split())


def enforce_word_limit(caption: str, max_words: int) -> str:
    words = caption.split()
    if len(words) <= max_words:
        return caption
    truncated = " ".join(words[:max_words])
    return truncated if truncated.endswith(".") else truncated + "."


class CaptionSynthesizer:
    def __init__(self, cfg: PipelineConfig | None = None):
        self.cfg = cfg or PipelineConfig()

    def update_config(self, cfg: PipelineConfig) -> None:
        self.cfg = cfg

    def select_template(self, semantic: SemanticDescription) -> TemplateSelection:
        has_text = bool(semantic.text_present and semantic.text_content)

        if semantic.type == "document":
            template, reason = (
                ("document_with_text", "Document with readable text detected")
                if has_text
                else ("photo_object_focused", "Document without readable text")
            )
        elif semantic.type == "screenshot":
            template, reason = (
                ("screenshot_with_text", "Screenshot with visible text")
                if has_text
                else ("photo_object_focused", "Screenshot without text")
            )
        elif semantic.type == "diagram":
            template, reason = "diagram", "Diagram or chart detected"
        elif semantic.type in ("photo", "mixed"):
            if semantic.person_count == 1:
                template, reason = "photo_with_person", "Single person detected in photo"
            elif semantic.person_count > 1:
                template, reason = "photo_with_people", f"{semantic.person_count} people detected in photo"
            elif semantic.primary_subjects:
                template, reason = "photo_object_focused", "Objects detected without people"
            elif semantic.environment != "unknown":
                template, reason = "photo_scene", "Scene/environment detected"
            else:
                template, reason = "minimal", "No clear subjects detected"

            if has_text and semantic.person_count == 0 and not semantic.primary_subjects:
                template, reason = "text_heavy", "Text is primary content"
        else:
            template, reason = "unknown", "Unable to classify image content"

        return TemplateSelection(template=template, reason=reason, template_string=TEMPLATES[template])

    def synthesize(self, semantic: SemanticDescription, selection: TemplateSelection) -> SynthesizedCaption:
        subs: dict[str, str] = {}
        template = selection.template

        if template == "photo_with_person":
            subs["action"] = build_action_phrase(semantic)
            subs["environment"] = build_environment_phrase(semantic)
        elif template == "photo_with_people":
            subs["people"] = person_descriptor(semantic.person_count)
            subs["action"] = build_action_phrase(semantic)
            subs["environment"] = build_environment_phrase(semantic)
        elif template == "photo_object_focused":
            subs["primary_object"] = build_primary_object_phrase(semantic)
            subs["context"] = build_context_phrase(semantic)
        elif template == "photo_scene":
            subs["scene"] = with_article(semantic.environment if semantic.environment != "unknown" else "general")
            subs["objects"] = format_object_list(semantic.primary_subjects + semantic.secondary_objects)
        elif template in ("screenshot_with_text", "document_with_text", "text_heavy"):
            subs["text"] = semantic.text_content or "unreadable text"
        elif template == "diagram":
            subs["description"] = build_diagram_description(semantic)

        text = clean_caption(apply_substitutions(selection.template_string, subs))
        text = enforce_word_limit(text, self.cfg.max_caption_words)
        return SynthesizedCaption(text=text, word_count=count_words(text), template=template, substitutions=subs)
