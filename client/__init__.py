# =============================================================================
# Closet Tagger VLM - Client Package
# =============================================================================
# This package contains the command-line client that uploads clothing photos
# to the tagging server and manages the remote in-memory closet.
# =============================================================================
