import unittest

import numpy as np

from caption_stack.classification import (
    MODEL_UNAVAILABLE,
    ClassificationAdapter,
    has_text_indicator,
    normalize_label,
    process_predictions,
)
from caption_stack.config import PipelineConfig
from caption_stack.detection import (
    DetectionAdapter,
    count_people,
    has_people,
    primary_subject,
    process_detections,
    unique_labels,
)
from caption_stack.geometry import pixel_box_to_normalized
from caption_stack.model_state import LazyModel
from caption_stack.models import NormalizedImage, Preprocessing


def make_image(width: int = 200, height: int = 100) -> NormalizedImage:
    return NormalizedImage(
        tensor=np.full((8, 8, 3), 0.25, dtype=np.float32),
        width=8,
        height=8,
        original_width=width,
        original_height=height,
        preprocessing=Preprocessing(resized=True, color_normalized=True, target_size=8),
    )


class FakeClassifier:
    def __init__(self, predictions):
        self.predictions = predictions
        self.seen = None

    def classify(self, tensor):
        self.seen = tensor.shape
        return self.predictions


class FakeDetector:
    def __init__(self, predictions):
        self.predictions = predictions
        self.sizes = []

    def detect(self, tensor, original_size):
        self.sizes.append(original_size)
        return self.predictions


class BrokenProvider:
    def classify(self, tensor):
        raise RuntimeError("boom")

    def detect(self, tensor, original_size):
        raise RuntimeError("boom")


class LazyModelTests(unittest.TestCase):
    def test_failed_load_is_memoized(self):
        calls = []

        def loader():
            calls.append(1)
            raise RuntimeError("no weights")

        model = LazyModel("clf", loader)
        self.assertIsNone(model.get())
        self.assertIsNone(model.get())
        self.assertEqual(len(calls), 1)
        self.assertTrue(model.failed)
        self.assertEqual(model.error, "no weights")

    def test_retries_with_backoff(self):
        calls = []
        sleeps = []

        def loader():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("transient")
            return "model"

        model = LazyModel("clf", loader, retries=2, backoff_s=0.1, sleep=sleeps.append)
        self.assertEqual(model.get(), "model")
        self.assertEqual(len(calls), 3)
        self.assertEqual(sleeps, [0.1, 0.2])
        self.assertTrue(model.loaded)
        self.assertIsNone(model.error)

    def test_loader_returning_none_counts_as_failure(self):
        calls = []
        model = LazyModel("det", lambda: calls.append(1))
        self.assertIsNone(model.get())
        self.assertIsNone(model.get())
        self.assertEqual(len(calls), 1)
        self.assertTrue(model.failed)

    def test_missing_loader(self):
        model = LazyModel("ocr", None)
        self.assertIsNone(model.get())
        self.assertEqual(model.error, "no provider configured")

    def test_unload_calls_instance_unload(self):
        class Closable:
            closed = False

            def unload(self):
                Closable.closed = True

        model = LazyModel("clf", Closable)
        self.assertIsNotNone(model.get())
        model.unload()
        self.assertTrue(Closable.closed)
        self.assertFalse(model.loaded)

    def test_reset_forgets_failure_and_configure_changes_retries(self):
        calls = []

        def loader():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("no weights")
            return "model"

        model = LazyModel("clf", loader)
        self.assertIsNone(model.get())
        model.configure(retries=3, backoff_s=0.0)
        self.assertEqual(model.retries, 3)
        model.reset()
        self.assertFalse(model.failed)
        self.assertEqual(model.get(), "model")
        self.assertEqual(len(calls), 2)


class ClassificationTests(unittest.TestCase):
    def test_normalize_label(self):
        self.assertEqual(normalize_label("  Notebook_Computer "), "notebook computer")
        self.assertEqual(normalize_label("web-site"), "web site")

    def test_filter_sort_and_cap(self):
        cfg = PipelineConfig(max_classification_labels=2)
        preds = [
            {"label": "dog", "score": 0.35},
            {"label": "notebook, notebook computer", "score": 0.9},
            {"label": "cat", "score": 0.1},
            {"label": "Web_Site", "score": 0.5},
        ]
        labels = process_predictions(preds, cfg)
        self.assertEqual([l.normalized_label for l in labels], ["notebook", "web site"])
        self.assertEqual(labels[0].index, 1)
        self.assertEqual(labels[0].label, "notebook")

    def test_adapter_runs_provider(self):
        provider = FakeClassifier([{"label": "person", "score": 0.8}, {"label": "laptop", "score": 0.6}])
        adapter = ClassificationAdapter(PipelineConfig(), lambda: provider)
        result = adapter.classify(make_image())
        self.assertTrue(result.success)
        self.assertIsNone(result.error)
        self.assertEqual([l.normalized_label for l in result.labels], ["person", "laptop"])
        self.assertEqual(provider.seen, (8, 8, 3))
        self.assertTrue(adapter.is_ready())

    def test_unavailable_model_is_a_soft_failure(self):
        def loader():
            raise RuntimeError("missing")

        adapter = ClassificationAdapter(PipelineConfig(), loader)
        self.assertFalse(adapter.initialize())
        result = adapter.classify(make_image())
        self.assertTrue(result.success)
        self.assertEqual(result.labels, ())
        self.assertEqual(result.error, MODEL_UNAVAILABLE)

    def test_inference_error_is_a_soft_failure(self):
        adapter = ClassificationAdapter(PipelineConfig(), BrokenProvider)
        result = adapter.classify(make_image())
        self.assertTrue(result.success)
        self.assertEqual(result.error, "boom")

    def test_text_indicator_uses_whole_words(self):
        labels = process_predictions([{"label": "web site", "score": 0.9}], PipelineConfig())
        self.assertTrue(has_text_indicator(labels))
        labels = process_predictions([{"label": "signal tower", "score": 0.9}], PipelineConfig())
        self.assertFalse(has_text_indicator(labels))


class DetectionTests(unittest.TestCase):
    def test_boxes_are_normalized_to_original_size(self):
        preds = [{"label": "person", "score": 0.9, "bbox": (50, 25, 100, 50)}]
        objects = process_detections(preds, 200, 100, PipelineConfig())
        box = objects[0].bounding_box
        self.assertAlmostEqual(box.x, 0.25)
        self.assertAlmostEqual(box.y, 0.25)
        self.assertAlmostEqual(box.width, 0.5)
        self.assertAlmostEqual(box.height, 0.5)

    def test_boxes_are_clipped_to_frame(self):
        box = pixel_box_to_normalized((150, 80, 100, 100), 200, 100)
        self.assertLessEqual(box.x + box.width, 1.0)
        self.assertLessEqual(box.y + box.height, 1.0)
        with self.assertRaises(ValueError):
            pixel_box_to_normalized((0, 0, 1, 1), 0, 10)

    def test_threshold_sort_and_cap(self):
        cfg = PipelineConfig(max_detected_objects=2)
        preds = [
            {"label": "cup", "score": 0.5, "bbox": (0, 0, 10, 10)},
            {"label": "person", "score": 0.95, "bbox": (0, 0, 10, 10)},
            {"label": "chair", "score": 0.2, "bbox": (0, 0, 10, 10)},
            {"label": "person", "score": 0.7, "bbox": (0, 0, 10, 10)},
            {"label": "broken", "score": 0.9},
        ]
        objects = process_detections(preds, 100, 100, cfg)
        self.assertEqual([o.confidence for o in objects], [0.95, 0.7])
        self.assertEqual(count_people(objects), 2)
        self.assertTrue(has_people(objects))
        self.assertEqual(unique_labels(objects), ["person"])

    def test_people_helpers_match_semantic_counting(self):
        cfg = PipelineConfig(detection_threshold=0.1)
        preds = [
            {"label": "man", "score": 0.9, "bbox": (0, 0, 10, 10)},
            {"label": "person", "score": 0.8, "bbox": (0, 0, 10, 10)},
            {"label": "person", "score": 0.35, "bbox": (0, 0, 10, 10)},
            {"label": "dog", "score": 0.9, "bbox": (0, 0, 10, 10)},
        ]
        objects = process_detections(preds, 100, 100, cfg)
        self.assertEqual(count_people(objects), 2)
        self.assertFalse(has_people(objects[-1:]))

    def test_primary_subject_weighs_box_area(self):
        preds = [
            {"label": "cup", "score": 0.8, "bbox": (0, 0, 5, 5)},
            {"label": "table", "score": 0.75, "bbox": (0, 0, 100, 100)},
        ]
        objects = process_detections(preds, 100, 100, PipelineConfig())
        self.assertEqual(primary_subject(objects).normalized_label, "table")
        self.assertIsNone(primary_subject(()))

    def test_adapter_passes_original_size(self):
        provider = FakeDetector([{"label": "person", "score": 0.9, "bbox": (0, 0, 100, 50)}])
        adapter = DetectionAdapter(PipelineConfig(), lambda: provider)
        result = adapter.detect(make_image(200, 100))
        self.assertEqual(provider.sizes, [(200, 100)])
        self.assertEqual(len(result.objects), 1)
        self.assertAlmostEqual(result.objects[0].bounding_box.width, 0.5)

    def test_adapter_soft_failures(self):
        result = DetectionAdapter(PipelineConfig(), BrokenProvider).detect(make_image())
        self.assertTrue(result.success)
        self.assertEqual(result.objects, ())
        self.assertEqual(result.error, "boom")

        result = DetectionAdapter(PipelineConfig(), None).detect(make_image())
        self.assertTrue(result.success)
        self.assertIsNotNone(result.error)


if __name__ == "__main__":
    unittest.main()
