# =============================================================================
# Closet Tagger VLM - Shared Package
# =============================================================================
# Data contracts shared by the tagging server and client.
# =============================================================================
