# =============================================================================
# Closet Tagger VLM - Tagging Core Package
# =============================================================================
# This package contains the model-loading and inference-orchestration core:
# the lazily loaded model session, the single-flight inference coordinator,
# the prompt builder, the output normalizer, and the TaggingService facade
# consumed by the HTTP layer.
# =============================================================================
