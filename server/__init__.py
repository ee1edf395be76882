# =============================================================================
# Closet Tagger VLM - Server Package
# =============================================================================
# This package contains the HTTP presentation layer: the FastAPI app wrapping
# the TaggingService, the in-memory closet, and the server entry point.
# =============================================================================
