# =============================================================================
# tests/ - Test Suite
# =============================================================================
# - test_images.py: decoding, validation and derivatives of uploaded images
# - test_counters.py: atomic counter updates
# - test_artworks.py: artwork lifecycle and likes
# - test_curations.py: curation list rules and ordering
# - test_social.py: users and the follow graph
# - test_api.py: HTTP endpoints end to end
#
# Run tests with: pytest
# =============================================================================
