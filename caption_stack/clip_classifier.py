from __future__ import annotations

from typing import Any

import numpy as np

from .config import CLASSIFIER_VOCABULARY
from .utils import cleanup_torch_mps


CLIP_MEAN = (0.48145466, 0.4578275, 0.40821073)
CLIP_STD = (0.26862954, 0.26130258, 0.27577711)
PROMPT_TEMPLATE = "a photo of a {}"


def parse_openclip_model(model_ref: str) -> tuple[str, str]:
    raw = model_ref.replace("open_clip:", "", 1)
    if "/" not in raw:
        raise ValueError("CLIP model must be in form 'open_clip:MODEL/PRETRAINED'")
    model_name, pretrained = raw.split("/", 1)
    return model_name, pretrained


class OpenCLIPClassifier:
    """Zero-shot label classifier over a fixed vocabulary.

    ``classify`` takes the pipeline's (H, W, 3) float tensor in [0, 1] and
    returns ``[{"label", "score"}]`` sorted by softmax probability.
    """

    def __init__(self, model_ref: str, vocabulary: tuple[str, ...] = CLASSIFIER_VOCABULARY, top_k: int = 10):
        self.model_ref = model_ref
        self.vocabulary = vocabulary
        self.top_k = top_k
        self.model = None
        self.text_features = None
        self.image_size = 224
        self.device = "cpu"

    def load(self) -> "OpenCLIPClassifier":
        try:
            import open_clip
            import torch
        except Exception as exc:
            raise RuntimeError("open_clip_torch is required. Install with: uv pip install open_clip_torch") from exc

        model_name, pretrained = parse_openclip_model(self.model_ref)
        self.device = "mps" if hasattr(torch.backends, "mps") and torch.backends.mps.is_available() else "cpu"
        model, _, _ = open_clip.create_model_and_transforms(model_name, pretrained=pretrained)
        model = model.to(self.device)
        model.eval()
        tokenizer = open_clip.get_tokenizer(model_name)

        with torch.no_grad():
            tokens = tokenizer([PROMPT_TEMPLATE.format(label) for label in self.vocabulary]).to(self.device)
            text = model.encode_text(tokens)
            self.text_features = text / text.norm(dim=-1, keepdim=True)
            del tokens, text

        size = getattr(getattr(model, "visual", None), "image_size", 224)
        self.image_size = int(size[0] if isinstance(size, (tuple, list)) else size)
        self.model = model
        return self

    def unload(self) -> None:
        self.model = None
        self.text_features = None
        cleanup_torch_mps()

    def __enter__(self) -> "OpenCLIPClassifier":
        return self.load()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unload()

    def classify(self, tensor: np.ndarray) -> list[dict[str, Any]]:
        if self.model is None or self.text_features is None:
            raise RuntimeError("CLIP model not loaded")
        import torch
        import torch.nn.functional as F

        with torch.no_grad():
            batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32)).permute(2, 0, 1).unsqueeze(0)
            if batch.shape[-1] != self.image_size or batch.shape[-2] != self.image_size:
                batch = F.interpolate(batch, size=(self.image_size, self.image_size), mode="bilinear", align_corners=False)
            mean = torch.tensor(CLIP_MEAN).view(1, 3, 1, 1)
            std = torch.tensor(CLIP_STD).view(1, 3, 1, 1)
            batch = ((batch - mean) / std).to(self.device)

            vec = self.model.encode_image(batch)
            vec = vec / vec.norm(dim=-1, keepdim=True)
            probs = (100.0 * vec @ self.text_features.T).softmax(dim=-1)[0].detach().cpu().tolist()
            del batch, vec

        ranked = sorted(zip(self.vocabulary, probs), key=lambda x: x[1], reverse=True)
        return [{"label": label, "score": float(score)} for label, score in ranked[: self.top_k]]


def load_clip_classifier(model_ref: str) -> OpenCLIPClassifier:
    return OpenCLIPClassifier(model_ref).load()
