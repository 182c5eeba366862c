import unittest
from dataclasses import replace

from caption_stack.models import (
    ENVIRONMENTS,
    IMAGE_TYPES,
    BoundingBox,
    ClassificationLabel,
    ClassificationResult,
    DetectedObject,
    DetectionResult,
    OCRResult,
    SemanticDescription,
    StageTiming,
    TextBlock,
)
from caption_stack.semantic import (
    ScoredLabel,
    SemanticNormalizer,
    collapse_synonyms,
    determine_environment,
    person_descriptor,
    rank_subjects,
)


BOX = BoundingBox(0.1, 0.1, 0.3, 0.3)


def classification(*pairs) -> ClassificationResult:
    labels = tuple(
        ClassificationLabel(label=name, normalized_label=name, confidence=conf, index=i)
        for i, (name, conf) in enumerate(pairs)
    )
    return ClassificationResult(labels=labels, inference_time_ms=1, model_id="fake", success=True)


def detection(*pairs) -> DetectionResult:
    objects = tuple(
        DetectedObject(label=name, normalized_label=name, confidence=conf, bounding_box=BOX) for name, conf in pairs
    )
    return DetectionResult(objects=objects, inference_time_ms=1, model_id="fake", success=True)


def ocr(text: str = "", blocks: int = 0, meaningful: bool = False) -> OCRResult:
    return OCRResult(
        triggered=bool(text),
        trigger_reason="classification_hint" if text else "not_triggered",
        text_blocks=tuple(TextBlock(text=f"line {i}", confidence=0.9, bounding_box=BOX) for i in range(blocks)),
        extracted_text=text,
        text_summary=text,
        has_meaningful_text=meaningful,
        processing_time_ms=1,
        success=True,
    )


class SynonymTests(unittest.TestCase):
    def test_man_and_woman_collapse_to_person(self):
        merged = collapse_synonyms([ScoredLabel("man", 0.7), ScoredLabel("woman", 0.5)])
        self.assertEqual(len(merged), 1)
        self.assertEqual(merged[0].label, "person")
        self.assertAlmostEqual(merged[0].confidence, 0.77)

    def test_boost_is_capped(self):
        merged = collapse_synonyms([ScoredLabel("laptop", 0.95), ScoredLabel("notebook", 0.9), ScoredLabel("pc", 0.9)])
        self.assertEqual(merged[0].label, "laptop")
        self.assertEqual(merged[0].confidence, 1.0)

    def test_sorted_descending(self):
        merged = collapse_synonyms([ScoredLabel("cup", 0.4), ScoredLabel("dog", 0.8)])
        self.assertEqual([l.label for l in merged], ["dog", "cup"])


class EnvironmentTests(unittest.TestCase):
    def test_indoor_wins(self):
        self.assertEqual(determine_environment([ScoredLabel("kitchen", 0.5), ScoredLabel("sky", 0.2)]), "indoor")

    def test_requires_minimum_score(self):
        self.assertEqual(determine_environment([ScoredLabel("park", 0.25)]), "unknown")

    def test_tie_is_unknown(self):
        self.assertEqual(determine_environment([ScoredLabel("office", 0.5), ScoredLabel("street", 0.5)]), "unknown")


class SubjectTests(unittest.TestCase):
    def test_person_first_and_caps(self):
        labels = [ScoredLabel(n, 0.9) for n in ("dog", "cat", "car", "boat")] + [ScoredLabel("cup", 0.4)]
        primary, secondary = rank_subjects(labels, person_count=1)
        self.assertEqual(primary, ("person", "dog", "cat"))
        self.assertEqual(secondary, ("cup",))

    def test_environment_labels_are_not_subjects(self):
        primary, secondary = rank_subjects([ScoredLabel("beach", 0.9), ScoredLabel("sky", 0.5)], person_count=0)
        self.assertEqual(primary, ())
        self.assertEqual(secondary, ())


class NormalizerTests(unittest.TestCase):
    def setUp(self):
        self.normalizer = SemanticNormalizer()

    def test_person_with_laptop(self):
        desc = self.normalizer.normalize(
            classification(("person", 0.8), ("laptop", 0.6)),
            detection(("person", 0.9)),
            ocr(),
        )
        self.assertEqual(desc.type, "photo")
        self.assertEqual(desc.person_count, 1)
        self.assertEqual(desc.primary_subjects, ("person",))
        self.assertEqual(desc.secondary_objects, ("laptop",))
        self.assertEqual(desc.action_context, "using a laptop")
        self.assertEqual(desc.environment, "unknown")
        self.assertFalse(desc.text_present)

    def test_counts_detector_people(self):
        desc = self.normalizer.normalize(
            classification(),
            detection(("person", 0.9), ("person", 0.8), ("person", 0.3)),
            ocr(),
        )
        self.assertEqual(desc.person_count, 2)

    def test_classifier_person_fallback(self):
        desc = self.normalizer.normalize(classification(("woman", 0.5)), detection(), ocr())
        self.assertEqual(desc.person_count, 1)
        desc = self.normalizer.normalize(classification(("woman", 0.35)), detection(), ocr())
        self.assertEqual(desc.person_count, 0)

    def test_document_needs_three_meaningful_blocks(self):
        text = "Meeting notes for Tuesday"
        desc = self.normalizer.normalize(classification(("document", 0.7)), detection(), ocr(text, 3, True))
        self.assertEqual(desc.type, "document")
        self.assertTrue(desc.text_present)
        self.assertEqual(desc.text_content, text)

        desc = self.normalizer.normalize(classification(("document", 0.7)), detection(), ocr(text, 2, True))
        self.assertEqual(desc.type, "photo")

    def test_screen_and_diagram_without_text(self):
        desc = self.normalizer.normalize(classification(("monitor", 0.7)), detection(), ocr())
        self.assertEqual(desc.type, "screenshot")
        desc = self.normalizer.normalize(classification(("chart", 0.7)), detection(), ocr())
        self.assertEqual(desc.type, "diagram")

    def test_mixed_person_with_text(self):
        desc = self.normalizer.normalize(
            classification(("person", 0.7), ("sign", 0.5)), detection(), ocr("Open daily", 1, True)
        )
        self.assertEqual(desc.type, "mixed")

    def test_no_action_without_people(self):
        desc = self.normalizer.normalize(classification(("laptop", 0.9)), detection(), ocr())
        self.assertIsNone(desc.action_context)
        self.assertEqual(desc.primary_subjects, ("laptop",))


class DescriptorTests(unittest.TestCase):
    def test_person_descriptor_mapping(self):
        self.assertEqual(person_descriptor(0), "")
        self.assertEqual(person_descriptor(1), "a person")
        self.assertEqual(person_descriptor(2), "two people")
        self.assertEqual(person_descriptor(5), "5 people")
        self.assertEqual(person_descriptor(10), "a group of people")


class EnumFieldTests(unittest.TestCase):
    def test_unknown_values_are_rejected(self):
        with self.assertRaises(ValueError):
            replace(ocr(), trigger_reason="always")
        with self.assertRaises(ValueError):
            StageTiming(stage="ocr", duration_ms=1.0, status="running")
        with self.assertRaises(ValueError):
            SemanticDescription(
                type="selfie",
                primary_subjects=(),
                secondary_objects=(),
                environment="unknown",
                text_present=False,
                person_count=0,
                all_labels=(),
            )

    def test_normalizer_output_uses_known_values(self):
        result = SemanticNormalizer().normalize(classification(("beach", 0.8)), detection(), ocr())
        self.assertIn(result.type, IMAGE_TYPES)
        self.assertIn(result.environment, ENVIRONMENTS)


if __name__ == "__main__":
    unittest.main()
