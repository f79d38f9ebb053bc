"""Inference engine adapter implementations.

LlamaCppEngine: local llama.cpp via llama-cpp-python
"""

from .llama_cpp import LlamaCppEngine

__all__ = ["LlamaCppEngine"]
