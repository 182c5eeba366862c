import random
import re
import unittest

from caption_stack.caption import (
    PLACE_PHRASES,
    CaptionSynthesizer,
    article,
    clean_caption,
    enforce_word_limit,
    format_object_list,
)
from caption_stack.config import CLASSIFIER_VOCABULARY, SYNONYM_MAP, PipelineConfig
from caption_stack.models import SemanticDescription


def describe(**kw) -> SemanticDescription:
    base = dict(
        type="photo",
        primary_subjects=(),
        secondary_objects=(),
        environment="unknown",
        text_present=False,
        person_count=0,
        all_labels=(),
    )
    base.update(kw)
    return SemanticDescription(**base)


FORBIDDEN_WORDS = {
    "happy",
    "sad",
    "angry",
    "smiling",
    "crying",
    "man",
    "woman",
    "boy",
    "girl",
    "male",
    "female",
    "john",
    "mary",
    "obama",
    "asian",
    "caucasian",
    "old",
    "young",
}


class ListFormattingTests(unittest.TestCase):
    def test_articles(self):
        self.assertEqual(article("apple"), "an")
        self.assertEqual(article("laptop"), "a")

    def test_object_lists(self):
        self.assertEqual(format_object_list([]), "various elements")
        self.assertEqual(format_object_list(["cup"]), "a cup")
        self.assertEqual(format_object_list(["cup", "apple"]), "a cup and an apple")
        self.assertEqual(format_object_list(["cup", "apple", "dog"]), "a cup, an apple, and a dog")
        self.assertEqual(
            format_object_list(["cup", "apple", "dog", "cat", "owl", "car"]),
            "a cup, an apple, a dog, and a car",
        )


class PostProcessingTests(unittest.TestCase):
    def test_clean_caption(self):
        self.assertEqual(clean_caption("a person {action}  {environment} ."), "A person.")
        self.assertEqual(clean_caption("an image .. with  text , here"), "An image. with text, here")

    def test_word_limit(self):
        self.assertEqual(enforce_word_limit("one two three four", 2), "one two.")
        self.assertEqual(enforce_word_limit("one two.", 5), "one two.")


class TemplateTests(unittest.TestCase):
    def setUp(self):
        self.synth = CaptionSynthesizer(PipelineConfig())

    def caption(self, semantic):
        selection = self.synth.select_template(semantic)
        return selection, self.synth.synthesize(semantic, selection)

    def test_single_person_with_action(self):
        selection, caption = self.caption(
            describe(primary_subjects=("person",), secondary_objects=("laptop",), person_count=1, action_context="using a laptop")
        )
        self.assertEqual(selection.template, "photo_with_person")
        self.assertEqual(caption.text, "A person using a laptop.")
        self.assertEqual(caption.word_count, 5)

    def test_single_person_without_clauses(self):
        _, caption = self.caption(describe(primary_subjects=("person",), person_count=1))
        self.assertEqual(caption.text, "A person.")

    def test_place_phrase_from_canonical_labels(self):
        _, caption = self.caption(
            describe(primary_subjects=("person",), person_count=1, all_labels=("person", "street"))
        )
        self.assertEqual(caption.text, "A person on a street.")

    def test_place_phrases_use_canonical_labels(self):
        for names, _ in PLACE_PHRASES:
            for name in names:
                self.assertNotIn(name, SYNONYM_MAP)

    def test_people_outdoors(self):
        selection, caption = self.caption(
            describe(primary_subjects=("person",), person_count=3, environment="outdoor", all_labels=("person", "park"))
        )
        self.assertEqual(selection.template, "photo_with_people")
        self.assertEqual(caption.text, "3 people outdoors.")

    def test_object_focused(self):
        _, caption = self.caption(
            describe(primary_subjects=("dog",), secondary_objects=("ball", "grass"), environment="outdoor")
        )
        self.assertEqual(caption.text, "An image showing a dog outdoors with ball and grass.")

    def test_scene(self):
        selection, caption = self.caption(describe(environment="indoor", secondary_objects=()))
        self.assertEqual(selection.template, "photo_scene")
        self.assertEqual(caption.text, "An indoor scene with various elements.")

    def test_text_heavy_override(self):
        selection, caption = self.caption(describe(text_present=True, text_content="Sale 50% off"))
        self.assertEqual(selection.template, "text_heavy")
        self.assertEqual(caption.text, 'An image with text: "Sale 50% off".')

    def test_document_and_screenshot(self):
        selection, caption = self.caption(describe(type="document", text_present=True, text_content="Invoice 42"))
        self.assertEqual(selection.template, "document_with_text")
        self.assertEqual(caption.text, 'A document containing: "Invoice 42".')
        selection, _ = self.caption(describe(type="screenshot"))
        self.assertEqual(selection.template, "photo_object_focused")

    def test_diagram(self):
        _, caption = self.caption(describe(type="diagram", all_labels=("chart",)))
        self.assertEqual(caption.text, "A diagram showing data visualization.")

    def test_minimal_and_unknown(self):
        selection, caption = self.caption(describe())
        self.assertEqual(selection.template, "minimal")
        self.assertEqual(caption.text, "An image with unclear content.")
        selection, caption = self.caption(describe(type="unknown"))
        self.assertEqual(caption.text, "An image.")

    def test_word_limit_from_config(self):
        self.synth.update_config(PipelineConfig(max_caption_words=4))
        _, caption = self.caption(describe(text_present=True, text_content="one two three four five six"))
        self.assertEqual(caption.word_count, 4)
        self.assertTrue(caption.text.endswith("."))


class ForbiddenVocabularyTests(unittest.TestCase):
    def test_random_descriptions_never_leak_forbidden_words(self):
        rng = random.Random(1234)
        synth = CaptionSynthesizer(PipelineConfig())
        vocab = list(CLASSIFIER_VOCABULARY)
        for _ in range(500):
            semantic = describe(
                type=rng.choice(("photo", "screenshot", "document", "diagram", "mixed", "unknown")),
                primary_subjects=tuple(rng.sample(vocab, rng.randint(0, 3))),
                secondary_objects=tuple(rng.sample(vocab, rng.randint(0, 5))),
                environment=rng.choice(("indoor", "outdoor", "unknown")),
                person_count=rng.randint(0, 12),
                all_labels=tuple(rng.sample(vocab, rng.randint(0, 6))),
            )
            caption = synth.synthesize(semantic, synth.select_template(semantic))
            words = set(re.findall(r"[a-z]+", caption.text.lower()))
            self.assertFalse(words & FORBIDDEN_WORDS, caption.text)
            self.assertLessEqual(caption.word_count, 20)


if __name__ == "__main__":
    unittest.main()
