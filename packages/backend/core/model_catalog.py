"""Curated model catalog for local LLM inference.

Defines the GGUF models that can be downloaded from HuggingFace, grouped by
category so the UI can present fast, balanced, quality and coding choices.
"""

from dataclasses import dataclass
from enum import Enum

from huggingface_hub import hf_hub_url


class ModelCategory(str, Enum):
    """Model category for organization."""

    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"
    CODING = "coding"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    ModelCategory.FAST: "Fast & Light",
    ModelCategory.BALANCED: "Balanced",
    ModelCategory.QUALITY: "High Quality",
    ModelCategory.CODING: "Code Focused",
}


@dataclass(frozen=True)
class ModelDescriptor:
    """Static metadata for one downloadable model."""

    id: str
    display_name: str
    description: str
    category: ModelCategory
    repo: str
    filename: str
    size_mb: int
    context_length: int  # tokens
    ram_mb: int  # approximate resident size once loaded

    @property
    def download_url(self) -> str:
        """HuggingFace resolve URL for the GGUF file."""
        return hf_hub_url(repo_id=self.repo, filename=self.filename)

    @property
    def size_bytes(self) -> int:
        return self.size_mb * 1024 * 1024

    @property
    def ram_usage_formatted(self) -> str:
        if self.ram_mb >= 1000:
            return f"{self.ram_mb / 1000:.1f}GB"
        return f"{self.ram_mb}MB"


_MODELS: list[ModelDescriptor] = [
    # Fast & Light (< 1B params)
    ModelDescriptor(
        id="qwen3-0.6b",
        display_name="Qwen3 0.6B",
        description="Ultra-fast responses, basic tasks",
        category=ModelCategory.FAST,
        repo="Qwen/Qwen3-0.6B-GGUF",
        filename="Qwen3-0.6B-Q8_0.gguf",
        size_mb=639,
        context_length=8192,
        ram_mb=750,
    ),
    ModelDescriptor(
        id="tinyllama-1.1b",
        display_name="TinyLlama 1.1B",
        description="Quick chat, simple questions",
        category=ModelCategory.FAST,
        repo="TheBloke/TinyLlama-1.1B-Chat-v1.0-GGUF",
        filename="tinyllama-1.1b-chat-v1.0.Q4_K_M.gguf",
        size_mb=638,
        context_length=2048,
        ram_mb=800,
    ),
    # Balanced (1-2B params)
    ModelDescriptor(
        id="qwen2.5-1.5b",
        display_name="Qwen2.5 1.5B",
        description="Good balance of speed and quality",
        category=ModelCategory.BALANCED,
        repo="Qwen/Qwen2.5-1.5B-Instruct-GGUF",
        filename="qwen2.5-1.5b-instruct-q4_k_m.gguf",
        size_mb=986,
        context_length=32768,
        ram_mb=1100,
    ),
    ModelDescriptor(
        id="gemma2-2b",
        display_name="Gemma 2 2B",
        description="Google's efficient model",
        category=ModelCategory.BALANCED,
        repo="bartowski/gemma-2-2b-it-GGUF",
        filename="gemma-2-2b-it-Q4_K_M.gguf",
        size_mb=1500,
        context_length=8192,
        ram_mb=1700,
    ),
    ModelDescriptor(
        id="phi3-mini",
        display_name="Phi-3 Mini",
        description="Microsoft's compact powerhouse",
        category=ModelCategory.BALANCED,
        repo="microsoft/Phi-3-mini-4k-instruct-gguf",
        filename="Phi-3-mini-4k-instruct-q4.gguf",
        size_mb=2200,
        context_length=4096,
        ram_mb=2500,
    ),
    # High Quality (3B+ params)
    ModelDescriptor(
        id="llama3.2-3b",
        display_name="Llama 3.2 3B",
        description="Meta's latest, great reasoning",
        category=ModelCategory.QUALITY,
        repo="bartowski/Llama-3.2-3B-Instruct-GGUF",
        filename="Llama-3.2-3B-Instruct-Q4_K_M.gguf",
        size_mb=2000,
        context_length=8192,
        ram_mb=2300,
    ),
    ModelDescriptor(
        id="qwen2.5-3b",
        display_name="Qwen2.5 3B",
        description="Excellent multilingual support",
        category=ModelCategory.QUALITY,
        repo="Qwen/Qwen2.5-3B-Instruct-GGUF",
        filename="qwen2.5-3b-instruct-q4_k_m.gguf",
        size_mb=1900,
        context_length=32768,
        ram_mb=2200,
    ),
    ModelDescriptor(
        id="mistral-7b",
        display_name="Mistral 7B",
        description="Best quality, needs more RAM",
        category=ModelCategory.QUALITY,
        repo="TheBloke/Mistral-7B-Instruct-v0.2-GGUF",
        filename="mistral-7b-instruct-v0.2.Q4_K_M.gguf",
        size_mb=4100,
        context_length=8192,
        ram_mb=4800,
    ),
    # Code Focused
    ModelDescriptor(
        id="starcoder2-3b",
        display_name="StarCoder2 3B",
        description="Optimized for code generation",
        category=ModelCategory.CODING,
        repo="second-state/StarCoder2-3B-GGUF",
        filename="starcoder2-3b-Q4_K_M.gguf",
        size_mb=1800,
        context_length=4096,
        ram_mb=2100,
    ),
    ModelDescriptor(
        id="deepseek-coder-1.3b",
        display_name="DeepSeek Coder 1.3B",
        description="Fast code assistant",
        category=ModelCategory.CODING,
        repo="TheBloke/deepseek-coder-1.3b-instruct-GGUF",
        filename="deepseek-coder-1.3b-instruct.Q4_K_M.gguf",
        size_mb=800,
        context_length=16384,
        ram_mb=950,
    ),
]

MODEL_CATALOG: dict[str, ModelDescriptor] = {m.id: m for m in _MODELS}


def get_model(model_id: str) -> ModelDescriptor | None:
    """Look up a catalog entry by identifier."""
    return MODEL_CATALOG.get(model_id)


def models_by_category() -> dict[ModelCategory, list[ModelDescriptor]]:
    """Group catalog entries by category, preserving catalog order."""
    grouped: dict[ModelCategory, list[ModelDescriptor]] = {c: [] for c in ModelCategory}
    for model in MODEL_CATALOG.values():
        grouped[model.category].append(model)
    return grouped
