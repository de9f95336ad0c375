"""Centralized constants for markcdn.

This module contains all hardcoded constants used throughout the codebase.
Grouping them here makes it easier to:
- Find and modify default values
- Keep the emitted HTML contract in one place
- Maintain consistency across modules
"""

from __future__ import annotations

# =============================================================================
# Configuration Defaults
# =============================================================================

CONFIG_FILENAME = "markcdn.json"
CONFIG_ENV_VAR = "MARKCDN_CONFIG"

DEFAULT_MAX_WIDTH = 650  # px, width of the content column
DEFAULT_WRAPPER_STYLE = ""
DEFAULT_BACKGROUND_COLOR = "white"
DEFAULT_LINK_IMAGES_TO_ORIGINAL = True
DEFAULT_SHOW_CAPTIONS = False
DEFAULT_MARKDOWN_CAPTIONS = False
DEFAULT_LOADING = "lazy"
DEFAULT_DECODING = "async"
DEFAULT_IMAGE_OPERATIONS: dict[str, str] = {
    "quality": "smart",
    "format": "auto",
}
DEFAULT_PUBLIC_DIR = "public"

LOADING_VALUES = ("lazy", "eager", "auto")
DECODING_VALUES = ("async", "sync", "auto")
CAPTION_SOURCES = ("title", "alt")

# =============================================================================
# Image References
# =============================================================================

SUPPORTED_EXTENSIONS = frozenset(
    {"jpeg", "jpg", "png", "webp", "tif", "tiff", "gif", "svg"}
)

# Authors write this as alt text to request an intentionally empty alt="".
EMPTY_ALT_MARKER = "GATSBY_EMPTY_ALT"

# Query flag that bypasses the CDN and serves the file statically.
NO_PROCESS_FLAG = "noProcess"

# =============================================================================
# Uploadcare
# =============================================================================

# see https://uploadcare.com/docs/transformations/#dimensions
CDN_MAX_DIMENSION = 3000  # px
DEFAULT_CDN_BASE_URL = "https://ucarecdn.com"
UPLOAD_API_BASE_URL = "https://upload.uploadcare.com"
REST_API_BASE_URL = "https://api.uploadcare.com"
REST_API_ACCEPT = "application/vnd.uploadcare-v0.7+json"
REST_API_PAGE_LIMIT = 1000

DEFAULT_HTTP_TIMEOUT = 60.0  # seconds
DEFAULT_DNS_RETRY_DELAY = 5.0  # seconds
DEFAULT_MAX_THROTTLE_RETRIES = 3

# =============================================================================
# Placeholders
# =============================================================================

BASE64_WIDTH_PX = 20  # width of the blur-up preview

# =============================================================================
# Cache Settings
# =============================================================================

CACHE_KEY_PROJECT_FILES = "cache-key-uploadcare-project-files"
DEFAULT_CACHE_DIR = ".markcdn"
DEFAULT_CACHE_DB_FILENAME = "cache.db"

# =============================================================================
# HTML Contract
# =============================================================================

IMAGE_CLASS = "gatsby-resp-image-image"
IMAGE_WRAPPER_CLASS = "gatsby-resp-image-wrapper"
IMAGE_BACKGROUND_CLASS = "gatsby-resp-image-background-image"
IMAGE_LINK_CLASS = "gatsby-resp-image-link"
IMAGE_FIGURE_CLASS = "gatsby-resp-image-figure"
IMAGE_FIGCAPTION_CLASS = "gatsby-resp-image-figcaption"

IMAGE_STYLE = (
    "width:100%;height:100%;margin:0;vertical-align:middle;"
    "position:absolute;top:0;left:0;"
)

# =============================================================================
# Logging
# =============================================================================

DEFAULT_LOG_LEVEL = "DEBUG"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"
