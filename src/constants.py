"""Application-wide constants.

This module centralizes all magic numbers and configuration constants
to ensure a single source of truth and easier maintenance.

Batch limits reflect the remote service's practical URL length and
response size limits; callers must never exceed them.
"""

# =============================================================================
# Remote Service Endpoints
# =============================================================================

# Legacy form/query-string service surface
IDC_SERVICE_PATH = "/documents/web"

# Modern JSON REST surface
CONTENT_MANAGEMENT_API = "/content/management/api/v1.1"
CONTENT_DELIVERY_API = "/content/published/api/v1.1"

# Path prefixes the session broker is allowed to forward
FORWARDED_PATH_PREFIXES = ("documents/", "content/")

# Success sentinel of the legacy surface (LocalData.StatusCode)
IDC_STATUS_OK = "0"

# Legacy status code returned when a site does not exist
IDC_STATUS_SITE_NOT_FOUND = "-32"

# Success statuses of the REST surface
REST_SUCCESS_STATUS_CODES = (200, 201, 202)

# User name reported by the tenant config before the session is established
ANONYMOUS_USER = "anonymous"

# =============================================================================
# Batching
# =============================================================================

# Maximum page ids per SCS_GET_PAGE_DATA request
PAGE_DATA_BATCH_SIZE = 50

# Maximum content ids per OR-predicate item query
CONTENT_BATCH_SIZE = 30

# Page size when listing existing page index items
EXISTING_ITEMS_PAGE_SIZE = 100

# =============================================================================
# Polling
# =============================================================================

# Session establishment: ~60 seconds in total
SESSION_POLL_INTERVAL_SECONDS = 6.0
SESSION_POLL_MAX_ATTEMPTS = 10

# Publish / unpublish job status
PUBLISH_POLL_INTERVAL_SECONDS = 5.0

# =============================================================================
# HTTP
# =============================================================================

DEFAULT_HTTP_TIMEOUT_SECONDS = 60.0

DEFAULT_BROKER_HOST = "127.0.0.1"

# 0 lets the OS assign a free port
DEFAULT_BROKER_PORT = 0

# =============================================================================
# Page Index
# =============================================================================

# Maximum size of a single keyword value, in encoded bytes
KEYWORD_VALUE_MAX_BYTES = 2000

# Margin kept below the remote limit
KEYWORD_SAFETY_MARGIN_BYTES = 10

KEYWORD_CHUNK_MAX_BYTES = KEYWORD_VALUE_MAX_BYTES - KEYWORD_SAFETY_MARGIN_BYTES

# Value used for page title/description when the page has none
EMPTY_FIELD_PLACEHOLDER = " "

# The remote rejects item descriptions longer than this
ITEM_DESCRIPTION_MAX_CHARS = 128

# Fields the page index content type must expose
PAGE_INDEX_TEXT_FIELDS = ("site", "pageid", "pagename", "pageurl", "pagetitle")
PAGE_INDEX_DESCRIPTION_FIELD = "pagedescription"
PAGE_INDEX_KEYWORDS_FIELD = "keywords"

# Channel token preferred over any other
DEFAULT_CHANNEL_TOKEN_NAME = "defaultToken"

# =============================================================================
# Site Map
# =============================================================================

DEFAULT_SITE_MAP_CHANGEFREQ = "monthly"
DEFAULT_TOP_PAGE_PRIORITY = 1.0
SITE_MAP_NAMESPACE = "http://www.sitemaps.org/schemas/sitemap/0.9"
